from decimal import Decimal

from sqlalchemy import select

from repairshop.auth import Role
from repairshop.db import SessionLocal, engine
from repairshop.models import Base, Customer, DeviceCatalogEntry, InventoryItem, Profile
from repairshop.security.passwords import hash_password
from repairshop.services.settings_service import get_shop_settings

DEMO_PROFILES = [
    ('admin@example.com', 'Avery Admin', 'adminpass123', Role.ADMIN),
    ('tech@example.com', 'Taylor Tech', 'techpass123', Role.EMPLOYEE),
    ('customer@example.com', 'Casey Customer', 'customerpass', Role.CUSTOMER),
]

DEMO_INVENTORY = [
    ('Brush Roll', 'Dyson', 'DY-BR-01', 'A1', 6, Decimal('20.00'), Decimal('9.50')),
    ('HEPA Filter', 'Shark', 'SH-HF-02', 'A2', 2, Decimal('18.00'), Decimal('7.25')),
    ('Drive Belt', 'Hoover', 'HV-DB-03', 'B1', 0, Decimal('6.50'), Decimal('2.10')),
]

DEMO_CATALOG = [
    ('Dyson', 'V11'),
    ('Dyson', 'V15 Detect'),
    ('Shark', 'Navigator'),
    ('Hoover', 'WindTunnel'),
]


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        for email, full_name, password, role in DEMO_PROFILES:
            existing = db.execute(select(Profile).where(Profile.email == email)).scalar_one_or_none()
            if not existing:
                db.add(
                    Profile(
                        email=email,
                        full_name=full_name,
                        password_hash=hash_password(password),
                        role=role,
                        active=True,
                    )
                )

        customer = db.execute(select(Customer).where(Customer.email == 'customer@example.com')).scalar_one_or_none()
        if not customer:
            db.add(Customer(full_name='Casey Customer', email='customer@example.com', phone='5551234567', total_repairs=0))

        for name, manufacturer, sku, bin_location, quantity, price, cost in DEMO_INVENTORY:
            item = db.execute(select(InventoryItem).where(InventoryItem.sku == sku)).scalar_one_or_none()
            if not item:
                db.add(
                    InventoryItem(
                        name=name,
                        manufacturer=manufacturer,
                        sku=sku,
                        bin_location=bin_location,
                        quantity=quantity,
                        price=price,
                        cost=cost,
                        supplier=manufacturer,
                    )
                )

        for brand, model in DEMO_CATALOG:
            entry = db.execute(
                select(DeviceCatalogEntry).where(DeviceCatalogEntry.brand == brand, DeviceCatalogEntry.model == model)
            ).scalar_one_or_none()
            if not entry:
                db.add(DeviceCatalogEntry(brand=brand, model=model))

        get_shop_settings(db)
        db.commit()


if __name__ == '__main__':
    seed()
