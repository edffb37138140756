from flask_wtf import FlaskForm
from wtforms import (
    StringField, TextAreaField, SelectField, DateField, FloatField, IntegerField, BooleanField, PasswordField,
)
from wtforms.validators import DataRequired, Optional, Length, Email, URL, EqualTo, NumberRange

from models import Equipment, Location, Manufacturer, Technician
from scheduling import FREQUENCIES

EQUIPMENT_STATUSES = ['Active', 'Inactive', 'Under Maintenance', 'Decommissioned']
RISK_LEVELS = ['LOW', 'MEDIUM', 'HIGH']
WORK_ORDER_TYPES = ['Preventive', 'Corrective', 'Emergency', 'Calibration']
WORK_ORDER_PRIORITIES = ['Emergency', 'High', 'Medium', 'Low']
WORK_ORDER_STATUSES = ['Open', 'In Progress', 'Completed', 'On Hold', 'Cancelled']
USER_ROLES = ['User', 'Admin']


# ---------------- FIELD HELPERS ----------------
def strip(value):
    """Trim text input; blank becomes None so optional columns stay NULL."""
    if isinstance(value, str):
        value = value.strip()
    return value or None


def lower(value):
    return value.lower() if value else value


def optional_id(value):
    return int(value) if value not in (None, '') else None


def blank_none(value):
    return value or None


def record_choices(query, label):
    return [('', '-')] + [(r.id, getattr(r, label)) for r in query]


def optional_choices(values):
    return [('', '-')] + [(v, v) for v in values]


def record_data(form):
    """Column values of a validated form, without the CSRF token."""
    data = form.data
    data.pop('csrf_token', None)
    return data


def active_field():
    return BooleanField('Active', default=True, false_values=('false', '0', 'off', ''))


# ---------------- RECORDS ----------------
class EquipmentForm(FlaskForm):
    inventory_number = StringField('Inventory number', filters=[strip], validators=[DataRequired(), Length(max=50)])
    equipment_name = StringField('Equipment name', filters=[strip], validators=[DataRequired(), Length(min=2, max=255)])
    equipment_type = StringField('Equipment type', filters=[strip], validators=[DataRequired(), Length(max=100)])
    manufacturer_id = SelectField('Manufacturer', coerce=optional_id, validators=[Optional()])
    location_id = SelectField('Location', coerce=optional_id, validators=[Optional()])
    serial_number = StringField('Serial number', filters=[strip], validators=[Optional(), Length(max=100)])
    model_number = StringField('Model number', filters=[strip], validators=[Optional(), Length(max=100)])
    installation_date = DateField('Installation date', validators=[Optional()])
    purchase_date = DateField('Purchase date', validators=[Optional()])
    purchase_price = FloatField('Purchase price', validators=[Optional(), NumberRange(min=0)])
    warranty_expiry = DateField('Warranty expiry', validators=[Optional()])
    risk_level = SelectField('Risk level', choices=optional_choices(RISK_LEVELS), coerce=blank_none, validators=[Optional()])
    status = SelectField('Status', choices=EQUIPMENT_STATUSES, validators=[DataRequired()])

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.manufacturer_id.choices = record_choices(
            Manufacturer.query.order_by(Manufacturer.manufacturer_name), 'manufacturer_name')
        self.location_id.choices = record_choices(Location.query.order_by(Location.department_name), 'label')


class ScheduleForm(FlaskForm):
    equipment_id = SelectField('Equipment', coerce=optional_id, validators=[DataRequired()])
    maintenance_type = StringField('Maintenance type', filters=[strip], validators=[DataRequired(), Length(max=255)])
    frequency = SelectField('Frequency', choices=FREQUENCIES, validators=[DataRequired()])
    frequency_interval = IntegerField('Frequency interval', validators=[Optional(), NumberRange(min=1)])
    last_performed = DateField('Last performed', validators=[Optional()])
    next_due = DateField('Next due date', validators=[DataRequired()])
    estimated_hours = FloatField('Estimated hours', validators=[Optional(), NumberRange(min=0)])
    required_parts = TextAreaField('Required parts', filters=[strip])
    procedure_details = TextAreaField('Procedure details', filters=[strip])
    is_active = active_field()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.equipment_id.choices = record_choices(Equipment.query.order_by(Equipment.equipment_name), 'equipment_name')


class CompletionForm(FlaskForm):
    # Missing means today; a malformed date is rejected
    completed_on = DateField('Completed on', validators=[Optional()])


class WorkOrderForm(FlaskForm):
    equipment_id = SelectField('Equipment', coerce=optional_id, validators=[DataRequired()])
    workorder_type = SelectField('Work order type', choices=WORK_ORDER_TYPES, validators=[DataRequired()])
    priority = SelectField('Priority', choices=WORK_ORDER_PRIORITIES, validators=[DataRequired()])
    problem_description = TextAreaField('Description', filters=[strip], validators=[DataRequired(), Length(min=10)])
    requested_by = StringField('Requester name', filters=[strip], validators=[DataRequired(), Length(min=2, max=120)])

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.equipment_id.choices = record_choices(Equipment.query.order_by(Equipment.equipment_name), 'equipment_name')


class WorkOrderUpdateForm(FlaskForm):
    status = SelectField('Status', choices=WORK_ORDER_STATUSES, validators=[DataRequired()])
    priority = SelectField('Priority', choices=WORK_ORDER_PRIORITIES, validators=[DataRequired()])
    assigned_technician_id = SelectField('Technician', coerce=optional_id, validators=[Optional()])
    service_provider = StringField('Service provider', filters=[strip], validators=[Optional(), Length(max=255)])
    fault_code = StringField('Fault code', filters=[strip], validators=[Optional(), Length(max=50)])
    scheduled_date = DateField('Scheduled date', validators=[Optional()])
    start_date = DateField('Start date', validators=[Optional()])
    completion_date = DateField('Completion date', validators=[Optional()])
    downtime_hours = FloatField('Downtime hours', validators=[Optional(), NumberRange(min=0)])
    work_description = TextAreaField('Work description', filters=[strip])
    resolution = TextAreaField('Resolution', filters=[strip])
    labor_hours = FloatField('Labor hours', validators=[Optional(), NumberRange(min=0)])
    labor_cost = FloatField('Labor cost', validators=[Optional(), NumberRange(min=0)])
    parts_cost = FloatField('Parts cost', validators=[Optional(), NumberRange(min=0)])

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.assigned_technician_id.choices = record_choices(
            Technician.query.order_by(Technician.last_name, Technician.first_name), 'full_name')

    @property
    def total_cost(self):
        if self.labor_cost.data is None and self.parts_cost.data is None:
            return None
        return (self.labor_cost.data or 0) + (self.parts_cost.data or 0)


class TechnicianForm(FlaskForm):
    technician_code = StringField('Code', filters=[strip], validators=[DataRequired(), Length(max=50)])
    first_name = StringField('First name', filters=[strip], validators=[DataRequired(), Length(min=2, max=100)])
    last_name = StringField('Last name', filters=[strip], validators=[DataRequired(), Length(min=2, max=100)])
    email = StringField('Email', filters=[strip], validators=[Optional(), Email(), Length(max=255)])
    phone = StringField('Phone', filters=[strip], validators=[Optional(), Length(max=20)])
    specialization = StringField('Specialization', filters=[strip], validators=[Optional(), Length(max=255)])
    certification = StringField('Certification', filters=[strip], validators=[Optional(), Length(max=255)])
    is_active = active_field()


class ManufacturerForm(FlaskForm):
    manufacturer_code = StringField('Code', filters=[strip], validators=[DataRequired(), Length(max=50)])
    manufacturer_name = StringField('Name', filters=[strip], validators=[DataRequired(), Length(min=2, max=255)])
    contact_name = StringField('Contact name', filters=[strip], validators=[Optional(), Length(max=255)])
    phone = StringField('Phone', filters=[strip], validators=[Optional(), Length(max=20)])
    email = StringField('Email', filters=[strip], validators=[Optional(), Email(), Length(max=255)])
    address = TextAreaField('Address', filters=[strip])
    website = StringField('Website', filters=[strip], validators=[Optional(), URL(), Length(max=255)])
    is_active = active_field()


class CustomerForm(FlaskForm):
    customer_code = StringField('Code', filters=[strip], validators=[DataRequired(), Length(max=50)])
    customer_name = StringField('Name', filters=[strip], validators=[DataRequired(), Length(min=2, max=255)])
    contact_name = StringField('Contact name', filters=[strip], validators=[Optional(), Length(max=255)])
    phone = StringField('Phone', filters=[strip], validators=[Optional(), Length(max=20)])
    email = StringField('Email', filters=[strip], validators=[Optional(), Email(), Length(max=255)])
    address = TextAreaField('Address', filters=[strip])
    city = StringField('City', filters=[strip], validators=[Optional(), Length(max=100)])
    state_province = StringField('State/Province', filters=[strip], validators=[Optional(), Length(max=100)])
    postal_code = StringField('Postal code', filters=[strip], validators=[Optional(), Length(max=20)])
    country = StringField('Country', filters=[strip], validators=[Optional(), Length(max=100)])
    is_active = active_field()


def parse_locations(form):
    """
    Pair up the repeated facility_code / department_name inputs of the customer form.
    Rows without a department name are dropped.
    """
    codes = form.getlist('facility_code')
    departments = form.getlist('department_name')
    locations = []
    for i, department in enumerate(departments):
        department = (department or '').strip()
        if not department:
            continue
        code = codes[i].strip() if i < len(codes) and codes[i] else None
        locations.append({'facility_code': code or None, 'department_name': department})
    return locations


class PartForm(FlaskForm):
    part_number = StringField('Part number', filters=[strip], validators=[DataRequired(), Length(max=10)])
    part_name = StringField('Part name', filters=[strip], validators=[DataRequired(), Length(min=2, max=30)])
    equipment_id = SelectField('Equipment', coerce=optional_id, validators=[Optional()])
    manufacturer_id = SelectField('Manufacturer', coerce=optional_id, validators=[Optional()])
    category = StringField('Category', filters=[strip], validators=[Optional(), Length(max=255)])
    unit_cost = FloatField('Unit cost', validators=[Optional(), NumberRange(min=0)])
    current_stock = IntegerField('Current stock', default=0, filters=[lambda v: 0 if v is None else v],
                                 validators=[Optional(), NumberRange(min=0)])
    minimum_stock = IntegerField('Minimum stock', validators=[Optional(), NumberRange(min=0)])
    maximum_stock = IntegerField('Maximum stock', validators=[Optional(), NumberRange(min=0)])
    reorder_point = IntegerField('Reorder point', validators=[Optional(), NumberRange(min=0)])
    storage_location = StringField('Storage location', filters=[strip], validators=[Optional(), Length(max=255)])
    lead_time_days = IntegerField('Lead time', validators=[Optional(), NumberRange(min=0)])
    last_order_date = DateField('Last order date', validators=[Optional()])
    serial_number = StringField('Serial number', filters=[strip], validators=[Optional(), Length(max=16)])
    install_date = DateField('Install date', validators=[Optional()])
    customer_warranty_start_date = DateField('Customer warranty start', validators=[Optional()])
    customer_warranty_end_date = DateField('Customer warranty end', validators=[Optional()])
    end_of_support_date = DateField('End of support', validators=[Optional()])
    license_type = StringField('License type', filters=[strip], validators=[Optional(), Length(max=10)])
    is_active = active_field()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.equipment_id.choices = record_choices(Equipment.query.order_by(Equipment.equipment_name), 'equipment_name')
        self.manufacturer_id.choices = record_choices(
            Manufacturer.query.order_by(Manufacturer.manufacturer_name), 'manufacturer_name')


# ---------------- ACCOUNTS ----------------
class RegisterForm(FlaskForm):
    name = StringField('Name', filters=[strip], validators=[DataRequired(), Length(max=80)])
    email = StringField('Email', filters=[strip, lower], validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=8)])
    confirm_password = PasswordField('Confirm password', validators=[EqualTo('password', message="Passwords don't match")])


class ChangePasswordForm(FlaskForm):
    new_password = PasswordField('New password', validators=[DataRequired(), Length(min=8)])
    confirm_password = PasswordField('Confirm password', validators=[EqualTo('new_password', message="Passwords don't match")])


class AdminUserForm(FlaskForm):
    name = StringField('Name', filters=[strip], validators=[Optional(), Length(max=80)])
    email = StringField('Email', filters=[strip, lower], validators=[DataRequired(), Email(), Length(max=120)])
    role = SelectField('Role', choices=USER_ROLES, validators=[DataRequired()])
    # Temporary password; the user must replace it on first sign-in
    password = PasswordField('Temporary password', validators=[DataRequired(), Length(min=6)])
    confirm_password = PasswordField('Confirm password', validators=[EqualTo('password', message="Passwords don't match")])
