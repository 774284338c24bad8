"""
Seed a shop and an admin user

Usage: python scripts/seed_shop.py SHOP_CODE "Shop Name" USERNAME PASSWORD
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core import SessionLocal, engine, Base
from app.api.auth import get_password_hash
from app.models import Shop, AppUser


def seed(db, shop_code: str, shop_name: str, username: str, password: str):
    shop = db.query(Shop).filter(Shop.code == shop_code).first()
    if not shop:
        shop = Shop(code=shop_code, name=shop_name)
        db.add(shop)
        print(f"Created shop {shop_code}")
    else:
        print(f"Shop {shop_code} already exists")

    user = db.query(AppUser).filter(AppUser.username == username).first()
    if not user:
        user = AppUser(username=username, full_name=username, hashed_password=get_password_hash(password))
        db.add(user)
        print(f"Created user {username}")
    else:
        print(f"User {username} already exists")

    db.commit()
    return shop, user


if __name__ == "__main__":
    if len(sys.argv) != 5:
        print(__doc__)
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        shop, user = seed(db, *sys.argv[1:])
        print(f"Shop ID: {shop.id}")
    finally:
        db.close()
