# civic_app/models/reference.py

from sqlalchemy import Enum, Index, UniqueConstraint

from .base import BaseModel, db
from .enums import PositionBranch, PositionLevel


class Region(BaseModel):
    """Administrative region"""

    __tablename__ = "regions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    code = db.Column(db.String(20), nullable=True)

    provinces = db.relationship("Province", back_populates="region")

    def __repr__(self):
        return f"<Region {self.name}>"


class Province(BaseModel):
    """Province, belonging to a region"""

    __tablename__ = "provinces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    region_id = db.Column(db.Integer, db.ForeignKey("regions.id"), nullable=True, index=True)

    region = db.relationship("Region", back_populates="provinces")
    cities = db.relationship("CityMunicipality", back_populates="province")

    def __repr__(self):
        return f"<Province {self.name}>"


class CityMunicipality(BaseModel):
    """City or municipality, belonging to a province (NCR cities may have none)"""

    __tablename__ = "cities_municipalities"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    province_id = db.Column(db.Integer, db.ForeignKey("provinces.id"), nullable=True, index=True)
    is_city = db.Column(db.Boolean, default=False, nullable=False)

    province = db.relationship("Province", back_populates="cities")
    barangays = db.relationship("Barangay", back_populates="city_municipality")

    def __repr__(self):
        return f"<CityMunicipality {self.name}>"


class Barangay(BaseModel):
    """Barangay, belonging to a city or municipality"""

    __tablename__ = "barangays"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    city_municipality_id = db.Column(
        db.Integer, db.ForeignKey("cities_municipalities.id"), nullable=True, index=True
    )

    city_municipality = db.relationship("CityMunicipality", back_populates="barangays")

    def __repr__(self):
        return f"<Barangay {self.name}>"


class CongressionalDistrict(BaseModel):
    """Legislative district of a province or a highly urbanized city"""

    __tablename__ = "congressional_districts"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    district_number = db.Column(db.Integer, nullable=False)
    province_id = db.Column(db.Integer, db.ForeignKey("provinces.id"), nullable=True, index=True)
    city_municipality_id = db.Column(
        db.Integer, db.ForeignKey("cities_municipalities.id"), nullable=True, index=True
    )

    province = db.relationship("Province")
    city_municipality = db.relationship("CityMunicipality")

    def __repr__(self):
        return f"<CongressionalDistrict {self.name}>"


class GovernmentPosition(BaseModel):
    """Government position reference data (managed by administrators only)"""

    __tablename__ = "government_positions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False, index=True)
    level = db.Column(Enum(PositionLevel, name="position_level_enum"), nullable=False, index=True)
    branch = db.Column(Enum(PositionBranch, name="position_branch_enum"), nullable=False)
    term_years = db.Column(db.Integer, nullable=False, default=3)
    max_terms = db.Column(db.Integer, nullable=True)
    is_elected = db.Column(db.Boolean, default=True, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    description = db.Column(db.Text, nullable=True)

    __table_args__ = (Index("idx_position_level_branch", "level", "branch"),)

    def __repr__(self):
        return f"<GovernmentPosition {self.name}>"


class PoliticalParty(BaseModel):
    """Political party reference data"""

    __tablename__ = "political_parties"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    abbreviation = db.Column(db.String(20), nullable=True, index=True)
    color = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<PoliticalParty {self.name}>"


class Politician(BaseModel):
    """Person who holds or has held a government position"""

    __tablename__ = "politicians"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    slug = db.Column(db.String(255), nullable=False)
    photo_url = db.Column(db.String(500), nullable=True)
    short_bio = db.Column(db.Text, nullable=True)
    birth_date = db.Column(db.Date, nullable=True)

    # Denormalised pointers to the current assignment, refreshed on import
    party_id = db.Column(db.Integer, db.ForeignKey("political_parties.id"), nullable=True)
    position_id = db.Column(db.Integer, db.ForeignKey("government_positions.id"), nullable=True)

    party = db.relationship("PoliticalParty")
    position = db.relationship("GovernmentPosition")
    position_history = db.relationship(
        "PositionHistoryEntry",
        back_populates="politician",
        order_by="PositionHistoryEntry.term_start.desc()",
    )

    __table_args__ = (UniqueConstraint("slug", name="uq_politicians_slug"),)

    def __repr__(self):
        return f"<Politician {self.name}>"
