from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

template_tags = Table(
    "template_tags",
    Base.metadata,
    Column("template_id", Integer, ForeignKey("transaction_templates.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class ProfileDB(Base):
    __tablename__ = "profiles"

    # Subject of the auth token
    id = Column(Text, primary_key=True, index=True)

    # Base currency for reports and balances
    currency = Column(String(3), default="USD", server_default="USD", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("currency ~ '^[A-Z]{3}$'", name="chk_profile_currency"),)


class CategoryDB(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    color = Column(String(7), default="#6B7280", server_default="#6B7280", nullable=False)
    type = Column(Text, nullable=False)  # 'income' or 'expense'

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship("TransactionDB", back_populates="category", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
        CheckConstraint("type IN ('expense', 'income')", name="chk_category_type"),
        CheckConstraint("color ~ '^#[0-9A-Fa-f]{6}$'", name="chk_category_color"),
    )


class TagDB(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(String(100), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)


class PaymentMethodDB(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    currency = Column(String(3), nullable=False)
    card_type = Column(Text, nullable=True)  # debit, credit, cash, savings, other
    color = Column(String(7), nullable=True)

    is_default = Column(Boolean, default=False, server_default="false", nullable=False)
    # Archived methods keep their history but cannot be used for new records
    is_active = Column(Boolean, default=True, server_default="true", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship("TransactionDB", back_populates="payment_method", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_payment_method_user_name"),
        CheckConstraint("currency ~ '^[A-Z]{3}$'", name="chk_payment_method_currency"),
        CheckConstraint(
            "card_type IS NULL OR card_type IN ('debit', 'credit', 'cash', 'savings', 'other')",
            name="chk_payment_method_card_type",
        ),
        # One default per user
        Index(
            "uq_payment_method_single_default",
            "user_id",
            unique=True,
            postgresql_where=text("is_default"),
        ),
    )


class TransactionDB(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)

    # Amount converted to the user's base currency (for reports)
    amount = Column(Numeric(12, 2), nullable=False)

    # Amount in the payment method's currency
    native_amount = Column(Numeric(12, 2), nullable=True)
    exchange_rate = Column(Numeric(18, 8), nullable=True)
    base_currency = Column(String(3), nullable=True)

    type = Column(Text, nullable=False, default="expense", server_default="expense")
    date = Column(Date, nullable=False, server_default=func.current_date(), index=True)
    description = Column(String(500), nullable=True)

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=True)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id", ondelete="RESTRICT"), nullable=False)

    # Other side of a transfer
    linked_transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("CategoryDB", back_populates="transactions", lazy="selectin")
    payment_method = relationship("PaymentMethodDB", back_populates="transactions", lazy="selectin")
    tags = relationship("TagDB", secondary=transaction_tags, lazy="selectin", order_by="TagDB.name")

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense', 'transfer')", name="chk_transaction_type"),
        CheckConstraint(
            "(type = 'transfer' AND category_id IS NULL) OR (type != 'transfer' AND category_id IS NOT NULL)",
            name="chk_transaction_category",
        ),
        # Withdrawal side of a transfer is stored negative
        CheckConstraint("(type = 'transfer' AND amount != 0) OR amount > 0", name="chk_transaction_amount"),
        Index("ix_transactions_user_date", "user_id", "date"),
    )


class BudgetDB(Base):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)

    # First day of the budgeted month
    period = Column(Date, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("CategoryDB", lazy="selectin")
    tag = relationship("TagDB", lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_budget_amount"),
        CheckConstraint(
            "(category_id IS NOT NULL AND tag_id IS NULL) OR (category_id IS NULL AND tag_id IS NOT NULL)",
            name="chk_budget_target",
        ),
        CheckConstraint("EXTRACT(DAY FROM period) = 1", name="chk_budget_period"),
        UniqueConstraint("user_id", "category_id", "period", name="uq_budget_category_period"),
        UniqueConstraint("user_id", "tag_id", "period", name="uq_budget_tag_period"),
    )


class ExchangeRateDB(Base):
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, index=True)
    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(18, 8), nullable=False)
    date = Column(Date, nullable=False, server_default=func.current_date())
    source = Column(Text, nullable=False, default="STUB", server_default="STUB")

    # NULL for manual rates, which never expire
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_fetched_at = Column(DateTime(timezone=True), nullable=True)
    api_provider = Column(Text, nullable=True)
    is_stale = Column(Boolean, default=False, server_default="false", nullable=False)
    fetch_error_count = Column(Integer, default=0, server_default="0", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", "date", name="uq_exchange_rate_pair_date"),
        CheckConstraint("rate > 0", name="chk_exchange_rate_positive"),
        CheckConstraint("from_currency != to_currency", name="chk_exchange_rate_different_currencies"),
        CheckConstraint("source IN ('STUB', 'MANUAL', 'API', 'SYSTEM')", name="chk_exchange_rate_source"),
        Index("ix_exchange_rates_lookup", "from_currency", "to_currency", "date"),
    )


class TemplateDB(Base):
    __tablename__ = "transaction_templates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(String(100), nullable=False)

    # NULL means variable price: the amount is supplied when the template is used
    amount = Column(Numeric(12, 2), nullable=True)

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True)
    description = Column(String(500), nullable=True)
    is_favorite = Column(Boolean, default=False, server_default="false", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("CategoryDB", lazy="selectin")
    payment_method = relationship("PaymentMethodDB", lazy="selectin")
    tags = relationship("TagDB", secondary=template_tags, lazy="selectin", order_by="TagDB.name")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_template_user_name"),
        CheckConstraint("amount IS NULL OR amount > 0", name="chk_template_amount"),
    )
