from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), default='User')  # Admin, User
    must_change_password = db.Column(db.Boolean, default=False, nullable=False)
    password_changed_at = db.Column(db.DateTime)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)

class Manufacturer(db.Model):
    __tablename__ = 'manufacturers'
    id = db.Column(db.Integer, primary_key=True)
    manufacturer_code = db.Column(db.String(50))
    manufacturer_name = db.Column(db.String(255), nullable=False)
    contact_name = db.Column(db.String(255))
    phone = db.Column(db.String(20))
    email = db.Column(db.String(255))
    address = db.Column(db.Text)
    website = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    equipment = db.relationship('Equipment', backref='manufacturer', lazy=True)
    parts = db.relationship('Part', backref='manufacturer', lazy=True)

class Customer(db.Model):
    __tablename__ = 'customers'
    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(50), nullable=False)
    customer_name = db.Column(db.String(255), nullable=False)
    contact_name = db.Column(db.String(255))
    phone = db.Column(db.String(20))
    email = db.Column(db.String(255))
    address = db.Column(db.Text)
    city = db.Column(db.String(100))
    state_province = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    country = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    locations = db.relationship('Location', backref='customer', lazy=True, cascade='all, delete-orphan')

class Location(db.Model):
    __tablename__ = 'locations'
    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'))
    facility_code = db.Column(db.String(50))
    facility_name = db.Column(db.String(255))
    building_code = db.Column(db.String(50))
    department_name = db.Column(db.String(255), nullable=False)
    room_number = db.Column(db.String(50))
    floor_level = db.Column(db.String(50))
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    equipment = db.relationship('Equipment', backref='location', lazy=True)

    @property
    def label(self):
        if self.customer:
            return f'{self.customer.customer_name} / {self.department_name}'
        return self.department_name

class Equipment(db.Model):
    __tablename__ = 'inventory'
    id = db.Column(db.Integer, primary_key=True)
    inventory_number = db.Column(db.String(50), unique=True, nullable=False)
    serial_number = db.Column(db.String(100))
    model_number = db.Column(db.String(100))
    equipment_name = db.Column(db.String(255), nullable=False)
    equipment_type = db.Column(db.String(100), nullable=False)
    manufacturer_id = db.Column(db.Integer, db.ForeignKey('manufacturers.id'))
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'))
    installation_date = db.Column(db.Date)
    purchase_date = db.Column(db.Date)
    purchase_price = db.Column(db.Float)
    warranty_expiry = db.Column(db.Date)
    risk_level = db.Column(db.String(10))  # LOW, MEDIUM, HIGH
    status = db.Column(db.String(30), default='Active', nullable=False)  # Active, Inactive, Under Maintenance, Decommissioned
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    last_modified = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_by = db.Column(db.String(120))
    modified_by = db.Column(db.String(120))
    schedules = db.relationship('Schedule', backref='equipment', lazy=True)
    work_orders = db.relationship('WorkOrder', backref='equipment', lazy=True)
    parts = db.relationship('Part', backref='equipment', lazy=True)

class Schedule(db.Model):
    __tablename__ = 'schedules'
    id = db.Column(db.Integer, primary_key=True)
    equipment_id = db.Column(db.Integer, db.ForeignKey('inventory.id'), nullable=False)
    maintenance_type = db.Column(db.String(255), nullable=False)
    frequency = db.Column(db.String(20), nullable=False)  # Daily .. Annual, As Needed
    frequency_interval = db.Column(db.Integer)  # days
    last_performed = db.Column(db.Date)
    next_due = db.Column(db.Date, nullable=False)
    estimated_hours = db.Column(db.Float)
    required_parts = db.Column(db.Text)
    procedure_details = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    created_by = db.Column(db.String(120))

class WorkOrder(db.Model):
    __tablename__ = 'work_orders'
    id = db.Column(db.Integer, primary_key=True)
    workorder_number = db.Column(db.String(50), unique=True, nullable=False)
    equipment_id = db.Column(db.Integer, db.ForeignKey('inventory.id'), nullable=False)
    workorder_type = db.Column(db.String(20), nullable=False)  # Preventive, Corrective, Emergency, Calibration
    priority = db.Column(db.String(20), nullable=False)  # Emergency, High, Medium, Low
    requested_by = db.Column(db.String(120))
    assigned_technician_id = db.Column(db.Integer, db.ForeignKey('technicians.id'))
    service_provider = db.Column(db.String(255))
    problem_description = db.Column(db.Text)
    fault_code = db.Column(db.String(50))
    request_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    scheduled_date = db.Column(db.Date)
    start_date = db.Column(db.Date)
    completion_date = db.Column(db.Date)
    downtime_hours = db.Column(db.Float)
    work_description = db.Column(db.Text)
    resolution = db.Column(db.Text)
    labor_hours = db.Column(db.Float)
    labor_cost = db.Column(db.Float)
    parts_cost = db.Column(db.Float)
    total_cost = db.Column(db.Float)
    status = db.Column(db.String(20), default='Open', nullable=False)  # Open, In Progress, Completed, On Hold, Cancelled
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    last_modified = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_by = db.Column(db.String(120))
    modified_by = db.Column(db.String(120))

class Technician(db.Model):
    __tablename__ = 'technicians'
    id = db.Column(db.Integer, primary_key=True)
    technician_code = db.Column(db.String(50), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255))
    phone = db.Column(db.String(20))
    specialization = db.Column(db.String(255))
    certification = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)
    work_orders = db.relationship('WorkOrder', backref='assigned_technician', lazy=True)

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'

class Part(db.Model):
    __tablename__ = 'parts_inventory'
    id = db.Column(db.Integer, primary_key=True)
    part_number = db.Column(db.String(10), nullable=False)
    part_name = db.Column(db.String(30), nullable=False)
    equipment_id = db.Column(db.Integer, db.ForeignKey('inventory.id'))
    manufacturer_id = db.Column(db.Integer, db.ForeignKey('manufacturers.id'))
    category = db.Column(db.String(255))
    unit_cost = db.Column(db.Float)
    current_stock = db.Column(db.Integer, default=0, nullable=False)
    minimum_stock = db.Column(db.Integer)
    maximum_stock = db.Column(db.Integer)
    reorder_point = db.Column(db.Integer)
    storage_location = db.Column(db.String(255))
    lead_time_days = db.Column(db.Integer)
    last_order_date = db.Column(db.Date)
    serial_number = db.Column(db.String(16))
    install_date = db.Column(db.Date)
    customer_warranty_start_date = db.Column(db.Date)
    customer_warranty_end_date = db.Column(db.Date)
    end_of_support_date = db.Column(db.Date)
    license_type = db.Column(db.String(10))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_date = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def total_value(self):
        return (self.unit_cost or 0) * (self.current_stock or 0)

    @property
    def is_low_stock(self):
        return (self.current_stock or 0) <= (self.minimum_stock or 0)

    @property
    def stock_status(self):
        if self.is_low_stock:
            return 'Low Stock'
        return 'Active' if self.is_active else 'Inactive'
