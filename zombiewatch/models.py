from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)


class OnCourse(db.Model):
    """Last known position per driver. Overwritten on every sample."""
    __tablename__ = 'on_course'

    driver_id = db.Column(db.String(64), primary_key=True)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.BigInteger, nullable=False)

    def __repr__(self):
        return f'<OnCourse {self.driver_id}>'


class DriverLogEntry(db.Model):
    """Position of a driver at a given timestamp."""
    __tablename__ = 'driver_log'

    driver_id = db.Column(db.String(64), primary_key=True)
    timestamp = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)

    def __repr__(self):
        return f'<DriverLogEntry {self.driver_id}@{self.timestamp}>'


class DriverTimestamp(db.Model):
    __tablename__ = 'driver_timestamps'

    driver_id = db.Column(db.String(64), primary_key=True)
    timestamp = db.Column(db.BigInteger, primary_key=True, autoincrement=False)

    def __repr__(self):
        return f'<DriverTimestamp {self.driver_id}@{self.timestamp}>'


class ZombieSetting(db.Model):
    __tablename__ = 'zombie_settings'

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.String(64), nullable=False)

    def __repr__(self):
        return f'<ZombieSetting {self.key}={self.value}>'
