# volume_forecast/models.py
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, ForeignKey, Text, Enum,
    JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()

def build_channel_product_key(channel_code: str, product_code: str) -> str:
    """Derive the channel/product key, e.g. ``TT_SKU1``."""
    return f"{channel_code}_{product_code}"

class ScenarioStatus(enum.Enum):
    """Enum for scenario status.

    Values:
        DRAFT: Overrides and coefficients can be edited
        LOCKED: Read-only for overrides and coefficients
    """
    DRAFT = 'DRAFT'
    LOCKED = 'LOCKED'

    def __str__(self):
        """Return the string value of the enum."""
        return self.value

    @classmethod
    def from_string(cls, value: str) -> 'ScenarioStatus':
        """Create a ScenarioStatus from a string value.

        Raises:
            ValueError if the string value is not valid
        """
        try:
            return cls(value.upper())
        except ValueError:
            raise ValueError(f"Invalid scenario status: {value}. Valid values are: DRAFT, LOCKED")

class AuditAction(enum.Enum):
    GENERATE = 'GENERATE'
    CREATE = 'CREATE'
    CLONE = 'CLONE'
    LOCK = 'LOCK'
    UNLOCK = 'UNLOCK'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'

class Channel(Base):
    __tablename__ = 'channel'

    id = Column(Integer, primary_key=True)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    active = Column(Boolean, default=True)

class Product(Base):
    __tablename__ = 'product'

    id = Column(Integer, primary_key=True)
    product_code = Column(String(50), nullable=False, unique=True)
    brand = Column(String(100))
    category_macro = Column(String(100))  # e.g. Spirits, Wine
    category = Column(String(100))        # e.g. Vodka, Gin
    description = Column(String(255))
    active = Column(Boolean, default=True)

    channel_products = relationship("ChannelProduct", back_populates="product")
    assignments = relationship("ProductVariableAssignment", back_populates="product")

class ChannelProduct(Base):
    __tablename__ = 'channel_product'

    id = Column(Integer, primary_key=True)
    channel_code = Column(String(20), ForeignKey('channel.code'), nullable=False)
    product_code = Column(String(50), ForeignKey('product.product_code'), nullable=False)
    channel_product_key = Column(String(80), nullable=False, unique=True)
    active = Column(Boolean, default=True)

    # Last fiscal period with expected sales; later periods forecast to zero
    discontinue_fiscal_year = Column(Integer)
    discontinue_month_index = Column(Integer)

    product = relationship("Product", back_populates="channel_products")

    def __init__(self, **kwargs):
        if 'channel_product_key' not in kwargs and 'channel_code' in kwargs and 'product_code' in kwargs:
            kwargs['channel_product_key'] = build_channel_product_key(
                kwargs['channel_code'], kwargs['product_code']
            )
        super().__init__(**kwargs)

    __table_args__ = (
        UniqueConstraint('channel_code', 'product_code', name='uq_channel_product'),
    )

class HistoricMonthly(Base):
    __tablename__ = 'historic_monthly'

    id = Column(Integer, primary_key=True)
    channel_product_key = Column(String(80), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    month_index = Column(Integer, nullable=False)  # 1=Apr ... 12=Mar
    volume = Column(Float, default=0.0)

    __table_args__ = (
        UniqueConstraint('channel_product_key', 'fiscal_year', 'month_index', name='uq_historic_period'),
        Index('ix_historic_fiscal_year', 'fiscal_year'),
    )

class Variable(Base):
    __tablename__ = 'variable'

    id = Column(Integer, primary_key=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)  # Seasonality, Status, BrandGrowth
    active = Column(Boolean, default=True)

    categories = relationship("VariableCategory", back_populates="variable")

class VariableCategory(Base):
    __tablename__ = 'variable_category'

    id = Column(Integer, primary_key=True)
    variable_code = Column(String(50), ForeignKey('variable.code'), nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)  # High Season, Launch, Mature
    active = Column(Boolean, default=True)

    variable = relationship("Variable", back_populates="categories")

    __table_args__ = (
        UniqueConstraint('variable_code', 'code', name='uq_variable_category'),
    )

class ProductVariableAssignment(Base):
    __tablename__ = 'product_variable_assignment'

    id = Column(Integer, primary_key=True)
    product_code = Column(String(50), ForeignKey('product.product_code'), nullable=False)
    variable_code = Column(String(50), ForeignKey('variable.code'), nullable=False)
    category_code = Column(String(50), nullable=False)

    product = relationship("Product", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint('product_code', 'variable_code', name='uq_product_variable'),
    )

class Scenario(Base):
    __tablename__ = 'scenario'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    status = Column(Enum(ScenarioStatus), default=ScenarioStatus.DRAFT, nullable=False)
    description = Column(Text)
    source_scenario_id = Column(Integer, ForeignKey('scenario.id'))
    created_at = Column(DateTime, default=func.now())

    source_scenario = relationship("Scenario", remote_side=[id])

    @property
    def is_locked(self) -> bool:
        return self.status == ScenarioStatus.LOCKED

class ScenarioCoefficient(Base):
    __tablename__ = 'scenario_coefficient'

    id = Column(Integer, primary_key=True)
    scenario_id = Column(Integer, ForeignKey('scenario.id'), nullable=False)
    variable_code = Column(String(50), nullable=False)
    category_code = Column(String(50), nullable=False)
    month_index = Column(Integer, nullable=False)
    value = Column(Float, default=1.0)  # Multiplier, e.g. 1.15

    __table_args__ = (
        UniqueConstraint('scenario_id', 'variable_code', 'category_code', 'month_index',
                         name='uq_scenario_coefficient'),
    )

class OverrideBaseMonthly(Base):
    __tablename__ = 'override_base_monthly'

    id = Column(Integer, primary_key=True)
    scenario_id = Column(Integer, ForeignKey('scenario.id'), nullable=False)
    channel_product_key = Column(String(80), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    month_index = Column(Integer, nullable=False)
    base_volume = Column(Float, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('scenario_id', 'channel_product_key', 'fiscal_year', 'month_index',
                         name='uq_override_period'),
    )

class ForecastMonthly(Base):
    __tablename__ = 'forecast_monthly'

    id = Column(Integer, primary_key=True)
    scenario_id = Column(Integer, ForeignKey('scenario.id'), nullable=False)
    channel_product_key = Column(String(80), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    month_index = Column(Integer, nullable=False)

    base_volume_used = Column(Float, default=0.0)
    forecast_volume = Column(Float, default=0.0)
    forecast_volume_secondary = Column(Float, default=0.0)
    is_discontinued = Column(Boolean, default=False)
    factors_applied = Column(JSON, default=list)

    __table_args__ = (
        UniqueConstraint('scenario_id', 'channel_product_key', 'fiscal_year', 'month_index',
                         name='uq_forecast_period'),
        Index('ix_forecast_scenario', 'scenario_id'),
        # Output rows are deleted and reinserted on every run; never reuse ids
        {'sqlite_autoincrement': True},
    )

    def to_dict(self):
        return {
            'scenario_id': self.scenario_id,
            'channel_product_key': self.channel_product_key,
            'fiscal_year': self.fiscal_year,
            'month_index': self.month_index,
            'base_volume_used': self.base_volume_used,
            'forecast_volume': self.forecast_volume,
            'forecast_volume_secondary': self.forecast_volume_secondary,
            'is_discontinued': self.is_discontinued,
            'factors_applied': list(self.factors_applied or [])
        }

class AuditEvent(Base):
    __tablename__ = 'audit_event'

    id = Column(Integer, primary_key=True)
    occurred_at = Column(DateTime, default=func.now())
    actor = Column(String(100), nullable=False)
    action = Column(Enum(AuditAction), nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(String(50))
    summary = Column(Text, nullable=False)
    before = Column(JSON)  # Snapshot before change
    after = Column(JSON)   # Snapshot after change
