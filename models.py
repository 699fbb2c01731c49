# Database models for the bakery dashboard
# Three tables: products, inventory_batches (production) and sales_logs (sales)

from flask_sqlalchemy import SQLAlchemy

from reconciliation import ProductRecord, ProductionEvent, SaleEvent, to_money

# Initialize SQLAlchemy database instance
# Bound to the Flask app inside create_app()
db = SQLAlchemy()


class Product(db.Model):
    """
    Menu item with its current selling price.
    Products are edited and hidden, never deleted, so history keeps its names.
    """
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)  # Unique product identifier
    name = db.Column(db.String(120), nullable=False)  # Display name
    image_url = db.Column(db.String(255), nullable=True)  # Optional image reference
    default_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # Current unit price
    is_active = db.Column(db.Boolean, nullable=False, default=True)  # Shown in daily entry forms
    version = db.Column(db.Integer, nullable=False, default=1)  # Bumped on every update

    def to_record(self):
        return ProductRecord(
            id=self.id,
            name=self.name,
            price=to_money(self.default_price),
            active=bool(self.is_active),
            image_url=self.image_url,
            version=self.version,
        )


class InventoryBatch(db.Model):
    """
    Production event: one batch of a product made at a point in time.
    The unit price is captured when the batch is logged and never changes.
    """
    __tablename__ = 'inventory_batches'

    id = db.Column(db.Integer, primary_key=True)  # Unique batch ID
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)  # UTC
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)  # Product made
    quantity_made = db.Column(db.Integer, nullable=False)  # Units made
    unit_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # Price at time of production
    version = db.Column(db.Integer, nullable=False, default=1)
    product = db.relationship('Product')

    def to_record(self):
        return ProductionEvent(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity_made,
            unit_price=to_money(self.unit_price),
            created_at=self.created_at,
            version=self.version,
        )


class SalesLog(db.Model):
    """
    Sale event: units of a product sold at a point in time.
    ``unit_price`` is a snapshot of the product price when the sale was logged;
    reports use it only when SALE_PRICING is 'recorded'.
    """
    __tablename__ = 'sales_logs'

    id = db.Column(db.Integer, primary_key=True)  # Unique sale ID
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)  # UTC
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)  # Product sold
    quantity_sold = db.Column(db.Integer, nullable=False)  # Units sold
    logged_by = db.Column(db.String(80), nullable=False, default='')  # Who recorded the sale
    unit_price = db.Column(db.Numeric(10, 2), nullable=True)  # Price snapshot (nullable for legacy rows)
    version = db.Column(db.Integer, nullable=False, default=1)
    product = db.relationship('Product')

    def to_record(self):
        return SaleEvent(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity_sold,
            created_at=self.created_at,
            recorded_by=self.logged_by or '',
            unit_price=None if self.unit_price is None else to_money(self.unit_price),
            version=self.version,
        )
