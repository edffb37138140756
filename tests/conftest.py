"""Shared fixtures: the app on an in-memory database, a client, and signed-in users."""

import os

# Must be set before the app module creates its engine
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.setdefault('SECRET_KEY', 'test-secret')

from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app import app as flask_app
from models import db, User, Equipment, Schedule, Manufacturer


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin(app):
    user = User(name='Admin', email='admin@example.com',
                password_hash=generate_password_hash('admin-password'), role='Admin')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def staff(app):
    user = User(name='Staff', email='staff@example.com',
                password_hash=generate_password_hash('staff-password'), role='User')
    db.session.add(user)
    db.session.commit()
    return user


def login(client, email, password):
    return client.post('/login', data={'email': email, 'password': password})


@pytest.fixture
def admin_client(client, admin):
    login(client, 'admin@example.com', 'admin-password')
    return client


@pytest.fixture
def staff_client(client, staff):
    login(client, 'staff@example.com', 'staff-password')
    return client


@pytest.fixture
def equipment(app):
    maker = Manufacturer(manufacturer_code='SIE', manufacturer_name='Siemens Healthineers')
    eq = Equipment(inventory_number='INV-1', equipment_name='MRI Scanner', equipment_type='MRI',
                   manufacturer=maker, status='Active')
    db.session.add_all([maker, eq])
    db.session.commit()
    return eq


@pytest.fixture
def make_schedule(equipment):
    def _make(**kwargs):
        fields = dict(equipment=equipment, maintenance_type='Coil QA', frequency='Monthly',
                      next_due=date.today() + timedelta(days=60))
        fields.update(kwargs)
        schedule = Schedule(**fields)
        db.session.add(schedule)
        db.session.commit()
        return schedule
    return _make
