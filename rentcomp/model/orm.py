from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)


Base = declarative_base()

# money is whole IDR; timestamps are epoch seconds (UTC)


# ----------------------------
# Accounts
# ----------------------------
class Customer(Base):
    __tablename__ = "customer"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    username = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=False, unique=True)
    password = Column(String, nullable=False)  # bcrypt hash
    wallet = Column(Integer, nullable=False, default=0)
    jwt_token = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class Admin(Base):
    __tablename__ = "admin"
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True)
    password = Column(String, nullable=False)
    # admin | super-admin
    role = Column(String, nullable=False)
    jwt_token = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


# ----------------------------
# Catalog
# ----------------------------
class Computer(Base):
    __tablename__ = "computer"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    specs = Column(Text, nullable=True)
    hourly_rate = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class Service(Base):
    __tablename__ = "service"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)  # stock
    created_at = Column(Float, nullable=False)


# ----------------------------
# Bookings
# ----------------------------
class RentalHistory(Base):
    __tablename__ = "rental_history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False)
    computer_id = Column(Integer, ForeignKey("computer.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("admin.id"), nullable=True)
    rental_start_time = Column(Float, nullable=False)
    rental_end_time = Column(Float, nullable=False)
    total_cost = Column(Integer, nullable=False)
    # settlement | completed
    booking_status = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class RentalServices(Base):
    __tablename__ = "rental_services"
    id = Column(Integer, primary_key=True, autoincrement=True)
    # NULL for services bought outside a rental
    rental_history_id = Column(
        Integer, ForeignKey("rental_history.id"), nullable=True
    )
    service_id = Column(Integer, ForeignKey("service.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


# ----------------------------
# Money
# ----------------------------
class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False)
    # Top-Up | Rental Payment | Service Payment
    transaction_type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    # Wallet | GoPay | Bank Transfer
    transaction_method = Column(String, nullable=False)
    # gateway status, lowercase: pending | settlement | capture | deny | ...
    status = Column(String, nullable=False)
    payment_url = Column(Text, nullable=True)
    order_id = Column(String, nullable=True, unique=True)
    meta = Column("metadata", Text, nullable=True)  # JSON
    transaction_date = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class FulfillmentGate(Base):
    __tablename__ = "fulfillment_gates"
    order_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


# ----------------------------
# Audit + reporting
# ----------------------------
class Log(Base):
    __tablename__ = "log"
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, nullable=True)
    computer_id = Column(Integer, nullable=True)
    login_time = Column(Float, nullable=True)
    logout_time = Column(Float, nullable=True)
    description = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)


class Report(Base):
    __tablename__ = "report"
    id = Column(Integer, primary_key=True, autoincrement=True)
    admin_id = Column(Integer, ForeignKey("admin.id"), nullable=False)
    report_type = Column(String, nullable=False)
    start_date = Column(String, nullable=False)
    end_date = Column(String, nullable=False)
    total_transactions = Column(Integer, nullable=False)
    total_revenue = Column(Integer, nullable=False)
    top_services = Column(Text, nullable=False)  # JSON
    created_at = Column(Float, nullable=False)
