"""
Helpers building an in-memory entity store for service tests.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from volume_forecast.models import (
    Base, Channel, Product, ChannelProduct, HistoricMonthly, Variable,
    VariableCategory, ProductVariableAssignment, Scenario, ScenarioStatus,
    ScenarioCoefficient, OverrideBaseMonthly, ForecastMonthly
)

def make_session():
    engine = create_engine('sqlite://')
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()

def add_channel_product(session, product_code, channel_code='TT', brand='BrandA',
                        category_macro='Spirits', active=True, product_active=True,
                        discontinue=None):
    """Add a product sold through a channel; returns the ChannelProduct."""
    if session.query(Channel).filter(Channel.code == channel_code).first() is None:
        session.add(Channel(code=channel_code, name=channel_code))

    product = session.query(Product).filter(Product.product_code == product_code).first()
    if product is None:
        product = Product(
            product_code=product_code,
            brand=brand,
            category_macro=category_macro,
            category='Vodka',
            description=f"{product_code} description",
            active=product_active
        )
        session.add(product)

    channel_product = ChannelProduct(channel_code=channel_code, product_code=product_code, active=active)
    if discontinue:
        channel_product.discontinue_fiscal_year, channel_product.discontinue_month_index = discontinue
    session.add(channel_product)
    session.flush()
    return channel_product

def add_history(session, channel_product_key, fiscal_year, volumes):
    """Add history rows; ``volumes`` is a list (month 1 first) or a month -> volume dict."""
    if isinstance(volumes, list):
        volumes = {month: volume for month, volume in enumerate(volumes, start=1)}
    for month_index, volume in volumes.items():
        session.add(HistoricMonthly(
            channel_product_key=channel_product_key,
            fiscal_year=fiscal_year,
            month_index=month_index,
            volume=volume
        ))
    session.flush()

def add_scenario(session, name, fiscal_year, status=ScenarioStatus.DRAFT, source=None):
    scenario = Scenario(
        name=name,
        fiscal_year=fiscal_year,
        status=status,
        source_scenario_id=source.id if source is not None else None
    )
    session.add(scenario)
    session.flush()
    return scenario

def add_variable(session, code, categories, active=True):
    session.add(Variable(code=code, name=code, active=active))
    for category in categories:
        session.add(VariableCategory(variable_code=code, code=category, name=category))
    session.flush()

def assign(session, product_code, variable_code, category_code):
    session.add(ProductVariableAssignment(
        product_code=product_code,
        variable_code=variable_code,
        category_code=category_code
    ))
    session.flush()

def add_coefficient(session, scenario, variable_code, category_code, month_index, value):
    session.add(ScenarioCoefficient(
        scenario_id=scenario.id,
        variable_code=variable_code,
        category_code=category_code,
        month_index=month_index,
        value=value
    ))
    session.flush()

def add_override(session, scenario, channel_product_key, month_index, base_volume, fiscal_year=None):
    session.add(OverrideBaseMonthly(
        scenario_id=scenario.id,
        channel_product_key=channel_product_key,
        fiscal_year=fiscal_year if fiscal_year is not None else scenario.fiscal_year,
        month_index=month_index,
        base_volume=base_volume
    ))
    session.flush()

def add_forecast_output(session, scenario, channel_product_key, fiscal_year, volumes):
    """Add output rows as if a previous run had produced them."""
    for month_index, volume in enumerate(volumes, start=1):
        session.add(ForecastMonthly(
            scenario_id=scenario.id,
            channel_product_key=channel_product_key,
            fiscal_year=fiscal_year,
            month_index=month_index,
            base_volume_used=volume,
            forecast_volume=volume,
            forecast_volume_secondary=volume * 9,
            is_discontinued=False,
            factors_applied=[]
        ))
    session.flush()
