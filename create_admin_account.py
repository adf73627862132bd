#!/usr/bin/env python3
import os
import sys
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    print("ERROR: DATABASE_URL not found in .env")
    sys.exit(1)

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import User, UserRole, Store
from auth.utils import hash_password

engine = create_engine(DATABASE_URL)
Session = sessionmaker(bind=engine)
session = Session()

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@dealership.local").strip().lower()
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
STORE_NAME = os.getenv("DEFAULT_STORE_NAME", "Main Store")

if not ADMIN_PASSWORD:
    print("ERROR: set ADMIN_PASSWORD to create the super admin")
    sys.exit(1)

print("=== Creating Super Admin ===\n")

existing_user = session.query(User).filter(User.email == ADMIN_EMAIL).first()

if existing_user:
    print(f"✅ User already exists: {ADMIN_EMAIL}")
    if existing_user.role != UserRole.SUPER_ADMIN:
        existing_user.role = UserRole.SUPER_ADMIN
        session.commit()
        print("   Promoted to SUPER_ADMIN")
else:
    user = User(
        email=ADMIN_EMAIL,
        name="Administrator",
        password_hash=hash_password(ADMIN_PASSWORD),
        role=UserRole.SUPER_ADMIN,
    )
    session.add(user)
    session.commit()
    print(f"✅ Created super admin: {ADMIN_EMAIL}")

if not session.query(Store).filter(Store.name == STORE_NAME).first():
    store = Store(name=STORE_NAME, address="", brand_logos=[])
    session.add(store)
    session.commit()
    print(f"✅ Created store: {STORE_NAME} ({store.id})")

session.close()
