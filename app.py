from flask import Flask, render_template, request, redirect, session, flash, url_for, send_file, jsonify
from flask_wtf.csrf import CSRFProtect
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from collections import namedtuple, OrderedDict
from datetime import datetime, date, timedelta
from functools import wraps
import os
import io
import csv
import time
from reportlab.lib.pagesizes import letter, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib import colors

# Models
from models import db, User, Equipment, Schedule, WorkOrder, Technician, Manufacturer, Customer, Location, Part
from scheduling import (
    classify, advance, collect_alerts, InvalidSchedule, FREQUENCIES,
    OVERDUE, DUE_SOON, SCHEDULED,
)
from validation import (
    EquipmentForm, ScheduleForm, CompletionForm, WorkOrderForm, WorkOrderUpdateForm, TechnicianForm,
    ManufacturerForm, CustomerForm, PartForm, RegisterForm, ChangePasswordForm, AdminUserForm,
    record_data, parse_locations,
    EQUIPMENT_STATUSES, RISK_LEVELS, WORK_ORDER_TYPES, WORK_ORDER_PRIORITIES, WORK_ORDER_STATUSES,
)

# ---------------- UTILITIES ----------------
def parse_date_arg(value):
    """Parse a 'YYYY-MM-DD' query argument, returning None when absent or malformed."""
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], '%Y-%m-%d').date()
    except ValueError:
        return None

def form_values(record):
    """Column values of a record as strings, ready to pre-fill a form."""
    values = {}
    for column in record.__table__.columns:
        value = getattr(record, column.name)
        if value is None:
            values[column.name] = ''
        elif isinstance(value, bool):
            values[column.name] = 'true' if value else 'false'
        elif isinstance(value, (date, datetime)):
            values[column.name] = value.strftime('%Y-%m-%d')
        else:
            values[column.name] = str(value)
    return values

def csv_file(headers, rows, filename):
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)

    response = io.BytesIO()
    response.write(buffer.getvalue().encode('utf-8'))
    response.seek(0)

    return send_file(
        response,
        as_attachment=True,
        download_name=filename,
        mimetype='text/csv'
    )

def display_date(value):
    return value.strftime('%m/%d/%Y') if value else '-'

def save(record, success_message, failure_message):
    """Add and commit a record. Returns True on success; rolls back and flashes on failure."""
    try:
        db.session.add(record)
        db.session.commit()
        flash(success_message, "success")
        return True
    except SQLAlchemyError:
        app.logger.exception(failure_message)
        db.session.rollback()
        flash(failure_message, "error")
        return False

def safe_next(default):
    """Only follow local redirect targets."""
    target = request.form.get('next') or request.args.get('next') or ''
    if target.startswith('/') and not target.startswith('//'):
        return target
    return default

def flash_errors(form):
    for name, messages in form.errors.items():
        label = form[name].label.text if name in form else 'Form'
        for message in messages:
            flash(f"{label}: {message}", "error")

# ---------------- APP SETUP ----------------
app = Flask(__name__)

# Config
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///radiology.db')
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev_secret')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['ALERT_WINDOW_DAYS'] = int(os.getenv('ALERT_WINDOW_DAYS', 30))

# Init DB
db.init_app(app)
csrf = CSRFProtect(app)

# ---------------- CUSTOM JINJA2 FILTERS ----------------
@app.template_filter('format_date')
def format_date_filter(value, output_format='%b %d, %Y'):
    """Format a date, datetime or 'YYYY-MM-DD' string."""
    if not value:
        return 'N/A'
    if isinstance(value, (date, datetime)):
        return value.strftime(output_format)
    try:
        return datetime.strptime(value[:10], '%Y-%m-%d').strftime(output_format)
    except (ValueError, TypeError):
        return value

@app.template_filter('money')
def money_filter(value):
    return f"${value or 0:,.2f}"

@app.template_filter('options')
def options_filter(records, label):
    """(id, text) pairs for a select box."""
    return [(r.id, getattr(r, label)) for r in records]

@app.template_global('urgency')
def urgency(schedule):
    return classify(schedule, datetime.now(), app.config['ALERT_WINDOW_DAYS'])

# ---------------- SESSION CONTEXT ----------------
SessionContext = namedtuple('SessionContext', ['user_id', 'name', 'email', 'role', 'must_change_password'])

def load_session_context():
    """Build the signed-in user's context for this request, or None when nobody is signed in."""
    user_id = session.get('user')
    if user_id is None:
        return None
    user = User.query.get(user_id)
    if user is None:
        session.clear()
        return None
    return SessionContext(
        user_id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        must_change_password=user.must_change_password,
    )

# ---------------- AUTH DECORATORS ----------------
def login_required(f):
    """Pass the request's SessionContext as the view's first argument."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        ctx = load_session_context()
        if ctx is None:
            flash("Please login first!", "error")
            return redirect('/login')
        if ctx.must_change_password and request.endpoint not in ('change_password', 'logout'):
            flash("You must change your temporary password before continuing.", "error")
            return redirect('/change-password')
        return f(ctx, *args, **kwargs)
    return decorated_function

def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(ctx, *args, **kwargs):
        if ctx.role != 'Admin':
            flash("Access denied! Admin role required.", "error")
            return redirect('/dashboard')
        return f(ctx, *args, **kwargs)
    return decorated_function

@app.context_processor
def inject_current_user():
    return {'current_user': load_session_context()}

# ---------------- ROUTES ----------------
@app.route('/')
def home():
    return redirect('/login')

# REGISTER
@app.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'POST':
        form = RegisterForm()
        if not form.validate():
            flash_errors(form)
            return render_template('register.html', values=request.form), 400

        email = form.email.data
        if User.query.filter_by(email=email).first():
            flash("Email already registered!", "error")
            return render_template('register.html', values=request.form), 400

        user = User(name=form.name.data, email=email, password_hash=generate_password_hash(form.password.data), role='User')
        if save(user, "Registration successful!", "Registration failed!"):
            app.logger.info("Registered user %s", email)
            return redirect('/login')

    return render_template('register.html', values=request.form)

# LOGIN
@app.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = request.form.get('email', '').strip().lower()
        password = request.form.get('password', '')

        user = User.query.filter_by(email=email).first()

        if user and check_password_hash(user.password_hash, password):
            session.clear()
            session['user'] = user.id
            if user.must_change_password:
                flash("Please set a new password.", "info")
                return redirect('/change-password')
            flash("Login successful!", "success")
            return redirect('/dashboard')

        app.logger.warning("Failed sign-in for %s", email)
        flash("Invalid credentials!", "error")
        return render_template('login.html'), 401

    return render_template('login.html')

# LOGOUT
@app.route('/logout')
@login_required
def logout(ctx):
    session.clear()
    flash("Logged out successfully!", "success")
    return redirect('/login')

# CHANGE PASSWORD
@app.route('/change-password', methods=['GET', 'POST'])
@login_required
def change_password(ctx):
    if request.method == 'POST':
        form = ChangePasswordForm()
        if not form.validate():
            flash_errors(form)
            return render_template('change_password.html', ctx=ctx), 400

        user = User.query.get(ctx.user_id)
        user.password_hash = generate_password_hash(form.new_password.data)
        user.must_change_password = False
        user.password_changed_at = datetime.utcnow()
        if save(user, "Password changed successfully!", "An error occurred while changing password"):
            app.logger.info("Password changed for %s", ctx.email)
            return redirect('/dashboard')

    return render_template('change_password.html', ctx=ctx)

# ADMIN: CREATE USERS
@app.route('/admin/users', methods=['GET', 'POST'])
@admin_required
def admin_users(ctx):
    if request.method == 'POST':
        form = AdminUserForm()
        if not form.validate():
            flash_errors(form)
            return render_template('admin_users.html', users=User.query.order_by(User.email).all(), values=request.form), 400

        email = form.email.data
        if User.query.filter_by(email=email).first():
            flash("A user with this email already exists!", "error")
            return render_template('admin_users.html', users=User.query.order_by(User.email).all(), values=request.form), 400

        user = User(
            name=form.name.data or email.split('@')[0],
            email=email,
            password_hash=generate_password_hash(form.password.data),
            role=form.role.data,
            must_change_password=True,
        )
        if save(user, "User created successfully. They will be prompted to change password on first login.", "Failed to create user!"):
            app.logger.info("%s created user %s", ctx.email, email)
            return redirect('/admin/users')

    users = User.query.order_by(User.email).all()
    return render_template('admin_users.html', users=users, values=request.form)

# DASHBOARD
@app.route('/dashboard')
@login_required
def dashboard(ctx):
    now = datetime.now()
    today = now.date()
    window = app.config['ALERT_WINDOW_DAYS']

    total_equipment = Equipment.query.filter_by(status='Active').count()
    active_work_orders = WorkOrder.query.filter(WorkOrder.status.in_(['Open', 'In Progress'])).count()
    overdue = Schedule.query.filter(Schedule.is_active.is_(True), Schedule.next_due <= today).count()
    completed_today = WorkOrder.query.filter(
        WorkOrder.status == 'Completed',
        WorkOrder.completion_date == today
    ).count()

    recent = WorkOrder.query.order_by(WorkOrder.request_date.desc()).limit(5).all()

    status_counts = OrderedDict(
        db.session.query(Equipment.status, func.count(Equipment.id))
        .group_by(Equipment.status)
        .order_by(Equipment.status)
        .all()
    )

    upcoming = Schedule.query.filter(
        Schedule.is_active.is_(True),
        Schedule.next_due > today,
        Schedule.next_due <= today + timedelta(days=window)
    ).order_by(Schedule.next_due).all()

    return render_template(
        'dashboard.html',
        total_equipment=total_equipment,
        active_work_orders=active_work_orders,
        overdue=overdue,
        completed_today=completed_today,
        recent=recent,
        status_counts=status_counts,
        upcoming=upcoming,
        today=today
    )

# ALERTS
@app.route('/alerts')
@login_required
def alerts(ctx):
    now = datetime.now()
    window = app.config['ALERT_WINDOW_DAYS']

    # Only rows that can raise an alert are loaded
    schedules = Schedule.query.filter(
        Schedule.is_active.is_(True),
        Schedule.next_due <= now.date() + timedelta(days=window)
    ).order_by(Schedule.next_due).all()
    equipment = Equipment.query.filter(
        Equipment.warranty_expiry.isnot(None),
        Equipment.warranty_expiry <= now.date() + timedelta(days=window)
    ).order_by(Equipment.warranty_expiry).all()

    return render_template('alerts.html', alerts=collect_alerts(schedules, equipment, now, window))

# MAINTENANCE CALENDAR
def month_neighbours(first):
    """First days of the months before and after the month starting at first."""
    following = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    previous = (first - timedelta(days=1)).replace(day=1)
    return previous, following

@app.route('/schedule')
@login_required
def schedule_calendar(ctx):
    today = date.today()
    month = request.args.get('month', '').strip()
    try:
        first = datetime.strptime(month, '%Y-%m').date() if month else today.replace(day=1)
        previous, following = month_neighbours(first)
    except (ValueError, OverflowError):
        # Unparseable month, or one with no neighbour inside the date range (0001-01, 9999-12)
        first = today.replace(day=1)
        previous, following = month_neighbours(first)

    schedules = Schedule.query.filter(
        Schedule.is_active.is_(True),
        Schedule.next_due >= first,
        Schedule.next_due < following
    ).order_by(Schedule.next_due).all()

    days = OrderedDict()
    for s in schedules:
        days.setdefault(s.next_due, []).append(s)

    return render_template(
        'schedule.html',
        days=days,
        month=first,
        previous_month=previous.strftime('%Y-%m'),
        next_month=following.strftime('%Y-%m'),
        today=today
    )

# ---------------- EQUIPMENT ----------------
def equipment_form_choices():
    return {
        'manufacturers': Manufacturer.query.filter_by(is_active=True).order_by(Manufacturer.manufacturer_name).all(),
        'locations': Location.query.filter_by(is_active=True).order_by(Location.department_name).all(),
        'statuses': EQUIPMENT_STATUSES,
        'risk_levels': RISK_LEVELS,
    }

# LIST EQUIPMENT
@app.route('/equipment')
@login_required
def equipment_list(ctx):
    query = Equipment.query

    search = request.args.get('search', '').strip()
    if search:
        query = query.filter(
            (Equipment.equipment_name.ilike(f'%{search}%')) |
            (Equipment.inventory_number.ilike(f'%{search}%'))
        )

    status = request.args.get('status', '').strip()
    if status:
        query = query.filter(Equipment.status == status)

    assets = query.order_by(Equipment.equipment_name.asc()).all()
    return render_template('equipment_list.html', assets=assets, statuses=EQUIPMENT_STATUSES)

# ADD EQUIPMENT
@app.route('/equipment/new', methods=['GET', 'POST'])
@login_required
def equipment_add(ctx):
    if request.method == 'POST':
        form = EquipmentForm()
        if not form.validate():
            flash_errors(form)
            return render_template('equipment_form.html', values=request.form, mode='create', **equipment_form_choices()), 400

        data = record_data(form)
        eq = Equipment(created_by=ctx.email, modified_by=ctx.email, **data)
        if save(eq, "Equipment created successfully", "Failed to save equipment"):
            return redirect(f'/equipment/{eq.id}')

    return render_template('equipment_form.html', values=request.form, mode='create', **equipment_form_choices())

# EQUIPMENT DETAIL
@app.route('/equipment/<int:id>')
@login_required
def equipment_detail(ctx, id):
    asset = Equipment.query.get_or_404(id)
    schedules = Schedule.query.filter_by(equipment_id=id).order_by(Schedule.next_due).all()
    work_orders = WorkOrder.query.filter_by(equipment_id=id).order_by(WorkOrder.request_date.desc()).all()
    return render_template('equipment_detail.html', asset=asset, schedules=schedules, work_orders=work_orders)

# EDIT EQUIPMENT
@app.route('/equipment/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def equipment_edit(ctx, id):
    asset = Equipment.query.get_or_404(id)

    if request.method == 'POST':
        form = EquipmentForm()
        if not form.validate():
            flash_errors(form)
            return render_template('equipment_form.html', values=request.form, mode='edit', asset=asset, **equipment_form_choices()), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(asset, key, value)
        asset.modified_by = ctx.email
        if save(asset, "Equipment updated successfully", "Failed to save equipment"):
            return redirect(f'/equipment/{id}')

    return render_template('equipment_form.html', values=form_values(asset), mode='edit', asset=asset, **equipment_form_choices())

# ---------------- MAINTENANCE SCHEDULES ----------------
def schedule_form_choices():
    return {
        'equipment': Equipment.query.order_by(Equipment.equipment_name).all(),
        'frequencies': FREQUENCIES,
    }

# LIST SCHEDULES
@app.route('/maintenance')
@login_required
def maintenance_list(ctx):
    schedules = Schedule.query.order_by(Schedule.next_due.asc()).all()
    return render_template('maintenance_list.html', schedules=schedules, today=date.today())

# ADD SCHEDULE
@app.route('/maintenance/new', methods=['GET', 'POST'])
@login_required
def maintenance_add(ctx):
    if request.method == 'POST':
        form = ScheduleForm()
        if not form.validate():
            flash_errors(form)
            return render_template('maintenance_form.html', values=request.form, mode='create', **schedule_form_choices()), 400

        data = record_data(form)
        schedule = Schedule(created_by=ctx.email, **data)
        if save(schedule, "Maintenance schedule created successfully", "Failed to save maintenance schedule"):
            return redirect('/maintenance')

    values = request.form or {'equipment_id': request.args.get('equipment_id', ''), 'is_active': 'true'}
    return render_template('maintenance_form.html', values=values, mode='create', **schedule_form_choices())

# EDIT SCHEDULE
@app.route('/maintenance/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def maintenance_edit(ctx, id):
    schedule = Schedule.query.get_or_404(id)

    if request.method == 'POST':
        form = ScheduleForm()
        if not form.validate():
            flash_errors(form)
            return render_template('maintenance_form.html', values=request.form, mode='edit', schedule=schedule, **schedule_form_choices()), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(schedule, key, value)
        if save(schedule, "Maintenance schedule updated successfully", "Failed to save maintenance schedule"):
            return redirect('/maintenance')

    return render_template('maintenance_form.html', values=form_values(schedule), mode='edit', schedule=schedule, **schedule_form_choices())

# MARK MAINTENANCE PERFORMED
@app.route('/maintenance/<int:id>/complete', methods=['POST'])
@login_required
def maintenance_complete(ctx, id):
    schedule = Schedule.query.get_or_404(id)
    form = CompletionForm()
    if not form.validate():
        flash_errors(form)
        return redirect(safe_next('/maintenance'))
    completed_on = form.completed_on.data or date.today()

    try:
        rollover = advance(schedule, completed_on)
    except InvalidSchedule as e:
        flash(str(e), "error")
        return redirect(safe_next('/maintenance'))

    schedule.last_performed = rollover.last_performed
    schedule.next_due = rollover.next_due
    if save(schedule, f"Maintenance recorded. Next due {rollover.next_due.strftime('%b %d, %Y')}", "Failed to record maintenance"):
        app.logger.info("Schedule %s performed on %s by %s", id, completed_on, ctx.email)
    return redirect(safe_next('/maintenance'))

# ---------------- WORK ORDERS ----------------
@app.route('/work-orders')
@login_required
def work_orders(ctx):
    query = WorkOrder.query.outerjoin(Equipment)

    search = request.args.get('search', '').strip()
    if search:
        query = query.filter(
            (WorkOrder.workorder_number.ilike(f'%{search}%')) |
            (Equipment.equipment_name.ilike(f'%{search}%'))
        )

    status = request.args.get('status', '').strip()
    if status:
        query = query.filter(WorkOrder.status == status)

    orders = query.order_by(WorkOrder.request_date.desc()).all()
    return render_template('work_orders.html', orders=orders, statuses=WORK_ORDER_STATUSES)

@app.route('/work-orders/new', methods=['GET', 'POST'])
@login_required
def work_order_add(ctx):
    equipment = Equipment.query.filter_by(status='Active').order_by(Equipment.equipment_name).all()

    if request.method == 'POST':
        form = WorkOrderForm()
        if not form.validate():
            flash_errors(form)
            return render_template('work_order_form.html', values=request.form, equipment=equipment,
                                   types=WORK_ORDER_TYPES, priorities=WORK_ORDER_PRIORITIES), 400

        data = record_data(form)
        order = WorkOrder(
            workorder_number=f'WO-{int(time.time() * 1000)}',
            status='Open',
            request_date=datetime.utcnow(),
            created_by=ctx.email,
            **data
        )
        if save(order, "Work order created successfully", "Failed to create work order"):
            return redirect('/work-orders')

    return render_template('work_order_form.html', values=request.form, equipment=equipment,
                           types=WORK_ORDER_TYPES, priorities=WORK_ORDER_PRIORITIES)

@app.route('/work-orders/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def work_order_edit(ctx, id):
    order = WorkOrder.query.get_or_404(id)
    technicians = Technician.query.filter_by(is_active=True).order_by(Technician.last_name).all()
    choices = dict(technicians=technicians, statuses=WORK_ORDER_STATUSES, priorities=WORK_ORDER_PRIORITIES)

    if request.method == 'POST':
        form = WorkOrderUpdateForm()
        if not form.validate():
            flash_errors(form)
            return render_template('work_order_edit.html', order=order, values=request.form, **choices), 400

        data = record_data(form)
        data['total_cost'] = form.total_cost
        if data['status'] == 'Completed' and data['completion_date'] is None:
            data['completion_date'] = date.today()
        for key, value in data.items():
            setattr(order, key, value)
        order.modified_by = ctx.email
        if save(order, "Work order updated successfully", "Failed to update work order"):
            return redirect('/work-orders')

    return render_template('work_order_edit.html', order=order, values=form_values(order), **choices)

# ---------------- TECHNICIANS ----------------
@app.route('/technicians')
@login_required
def technicians(ctx):
    rows = Technician.query.order_by(Technician.last_name, Technician.first_name).all()
    return render_template('technicians.html', technicians=rows)

@app.route('/technicians/new', methods=['GET', 'POST'])
@login_required
def technician_add(ctx):
    if request.method == 'POST':
        form = TechnicianForm()
        if not form.validate():
            flash_errors(form)
            return render_template('technician_form.html', values=request.form, mode='create'), 400

        data = record_data(form)
        if save(Technician(**data), "Technician created successfully", "Failed to save technician"):
            return redirect('/technicians')

    return render_template('technician_form.html', values=request.form, mode='create')

@app.route('/technicians/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def technician_edit(ctx, id):
    tech = Technician.query.get_or_404(id)

    if request.method == 'POST':
        form = TechnicianForm()
        if not form.validate():
            flash_errors(form)
            return render_template('technician_form.html', values=request.form, mode='edit', technician=tech), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(tech, key, value)
        if save(tech, "Technician updated successfully", "Failed to save technician"):
            return redirect('/technicians')

    return render_template('technician_form.html', values=form_values(tech), mode='edit', technician=tech)

@app.route('/technicians/<int:id>/delete', methods=['POST'])
@login_required
def technician_delete(ctx, id):
    tech = Technician.query.get_or_404(id)
    try:
        WorkOrder.query.filter_by(assigned_technician_id=id).update({'assigned_technician_id': None})
        db.session.delete(tech)
        db.session.commit()
        flash("Technician deleted successfully", "success")
    except SQLAlchemyError:
        app.logger.exception("Technician delete failed")
        db.session.rollback()
        flash("Failed to delete technician", "error")
    return redirect('/technicians')

# ---------------- MANUFACTURERS ----------------
@app.route('/manufacturers')
@login_required
def manufacturers(ctx):
    rows = Manufacturer.query.order_by(Manufacturer.manufacturer_name).all()
    return render_template('manufacturers.html', manufacturers=rows)

@app.route('/manufacturers/new', methods=['GET', 'POST'])
@login_required
def manufacturer_add(ctx):
    if request.method == 'POST':
        form = ManufacturerForm()
        if not form.validate():
            flash_errors(form)
            return render_template('manufacturer_form.html', values=request.form, mode='create'), 400

        data = record_data(form)
        if save(Manufacturer(**data), "Manufacturer created successfully", "Failed to save manufacturer"):
            return redirect('/manufacturers')

    return render_template('manufacturer_form.html', values=request.form, mode='create')

@app.route('/manufacturers/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def manufacturer_edit(ctx, id):
    maker = Manufacturer.query.get_or_404(id)

    if request.method == 'POST':
        form = ManufacturerForm()
        if not form.validate():
            flash_errors(form)
            return render_template('manufacturer_form.html', values=request.form, mode='edit', manufacturer=maker), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(maker, key, value)
        if save(maker, "Manufacturer updated successfully", "Failed to save manufacturer"):
            return redirect('/manufacturers')

    return render_template('manufacturer_form.html', values=form_values(maker), mode='edit', manufacturer=maker)

# ---------------- CUSTOMERS & LOCATIONS ----------------
@app.route('/customers')
@login_required
def customers(ctx):
    rows = Customer.query.order_by(Customer.customer_name).all()
    return render_template('customers.html', customers=rows)

@app.route('/customers/new', methods=['GET', 'POST'])
@login_required
def customer_add(ctx):
    if request.method == 'POST':
        form = CustomerForm()
        if not form.validate():
            flash_errors(form)
            return render_template('customer_form.html', values=request.form, locations=parse_locations(request.form), mode='create'), 400

        data = record_data(form)
        customer = Customer(**data)
        customer.locations = [Location(is_active=True, **loc) for loc in parse_locations(request.form)]
        if save(customer, "Customer created successfully", "Failed to save customer"):
            return redirect('/customers')

    return render_template('customer_form.html', values=request.form, locations=[], mode='create')

@app.route('/customers/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def customer_edit(ctx, id):
    customer = Customer.query.get_or_404(id)

    if request.method == 'POST':
        form = CustomerForm()
        if not form.validate():
            flash_errors(form)
            return render_template('customer_form.html', values=request.form, locations=parse_locations(request.form),
                                   mode='edit', customer=customer), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(customer, key, value)

        # The submitted list replaces the customer's locations; rows matching an
        # existing department keep their id so equipment stays attached.
        existing = {loc.department_name: loc for loc in customer.locations}
        kept = []
        for loc in parse_locations(request.form):
            row = existing.pop(loc['department_name'], None) or Location(is_active=True)
            row.facility_code = loc['facility_code']
            row.department_name = loc['department_name']
            kept.append(row)
        for orphan in existing.values():
            Equipment.query.filter_by(location_id=orphan.id).update({'location_id': None})
        customer.locations = kept

        if save(customer, "Customer updated successfully", "Failed to save customer"):
            return redirect('/customers')

    locations = [{'facility_code': loc.facility_code or '', 'department_name': loc.department_name} for loc in customer.locations]
    return render_template('customer_form.html', values=form_values(customer), locations=locations, mode='edit', customer=customer)

@app.route('/customers/<int:id>/locations')
@login_required
def customer_locations(ctx, id):
    Customer.query.get_or_404(id)
    rows = Location.query.filter_by(customer_id=id, is_active=True).order_by(Location.department_name).all()
    return jsonify([{'location_id': loc.id, 'department_name': loc.department_name} for loc in rows])

# ---------------- PARTS INVENTORY ----------------
def part_form_choices():
    return {
        'equipment': Equipment.query.order_by(Equipment.equipment_name).all(),
        'manufacturers': Manufacturer.query.filter_by(is_active=True).order_by(Manufacturer.manufacturer_name).all(),
    }

@app.route('/parts-inventory')
@login_required
def parts_inventory(ctx):
    query = Part.query
    search = request.args.get('search', '').strip()
    if search:
        query = query.filter(
            (Part.part_name.ilike(f'%{search}%')) |
            (Part.part_number.ilike(f'%{search}%'))
        )
    parts = query.order_by(Part.part_name.asc()).all()
    return render_template('parts.html', parts=parts)

@app.route('/parts-inventory/new', methods=['GET', 'POST'])
@login_required
def part_add(ctx):
    if request.method == 'POST':
        form = PartForm()
        if not form.validate():
            flash_errors(form)
            return render_template('part_form.html', values=request.form, mode='create', **part_form_choices()), 400

        data = record_data(form)
        if save(Part(**data), "Part created successfully", "Failed to save part"):
            return redirect('/parts-inventory')

    return render_template('part_form.html', values=request.form, mode='create', **part_form_choices())

@app.route('/parts-inventory/<int:id>/edit', methods=['GET', 'POST'])
@login_required
def part_edit(ctx, id):
    part = Part.query.get_or_404(id)

    if request.method == 'POST':
        form = PartForm()
        if not form.validate():
            flash_errors(form)
            return render_template('part_form.html', values=request.form, mode='edit', part=part, **part_form_choices()), 400

        data = record_data(form)
        for key, value in data.items():
            setattr(part, key, value)
        if save(part, "Part updated successfully", "Failed to save part"):
            return redirect('/parts-inventory')

    return render_template('part_form.html', values=form_values(part), mode='edit', part=part, **part_form_choices())

@app.route('/parts-inventory/<int:id>/delete', methods=['POST'])
@login_required
def part_delete(ctx, id):
    part = Part.query.get_or_404(id)
    try:
        db.session.delete(part)
        db.session.commit()
        flash("Part deleted successfully", "success")
    except SQLAlchemyError:
        app.logger.exception("Part delete failed")
        db.session.rollback()
        flash("Failed to delete part", "error")
    return redirect('/parts-inventory')

# ---------------- REPORTS ----------------
@app.route('/reports')
@login_required
def reports(ctx):
    return render_template('reports.html')

def maintenance_history_query():
    start_date = parse_date_arg(request.args.get('start_date', '').strip())
    end_date = parse_date_arg(request.args.get('end_date', '').strip())

    query = Schedule.query
    if start_date:
        query = query.filter(Schedule.last_performed >= start_date)
    if end_date:
        query = query.filter(Schedule.last_performed <= end_date)

    # Most recently performed first, never-performed schedules last
    return query.order_by(Schedule.last_performed.is_(None), Schedule.last_performed.desc()).all()

def maintenance_history_rows(schedules, now):
    window = app.config['ALERT_WINDOW_DAYS']
    return [
        [
            s.equipment.equipment_name if s.equipment else '-',
            s.maintenance_type or '-',
            s.frequency or '-',
            display_date(s.last_performed),
            display_date(s.next_due),
            classify(s, now, window),
        ]
        for s in schedules
    ]

MAINTENANCE_HISTORY_HEADERS = ['Equipment', 'Maintenance Type', 'Frequency', 'Last Performed', 'Next Due', 'Status']

@app.route('/reports/maintenance-history')
@login_required
def maintenance_history(ctx):
    schedules = maintenance_history_query()
    return render_template('maintenance_history.html', schedules=schedules, args=request.args.to_dict())

@app.route('/reports/maintenance-history/export')
@login_required
def maintenance_history_export(ctx):
    schedules = maintenance_history_query()
    if not schedules:
        flash("No data to export", "error")
        return redirect(url_for('maintenance_history', **request.args.to_dict()))

    rows = maintenance_history_rows(schedules, datetime.now())
    return csv_file(MAINTENANCE_HISTORY_HEADERS, rows, f'maintenance-history-{date.today().isoformat()}.csv')

@app.route('/reports/maintenance-history/export/pdf')
@login_required
def maintenance_history_pdf(ctx):
    schedules = maintenance_history_query()
    rows = maintenance_history_rows(schedules, datetime.now())

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(letter))
    styles = getSampleStyleSheet()
    elements = []

    elements.append(Paragraph("Maintenance History", styles['Title']))
    elements.append(Spacer(1, 12))

    summary_data = [
        ["Total Records", len(rows)],
        ["Overdue", sum(1 for row in rows if row[-1] == OVERDUE)],
        ["Due Soon", sum(1 for row in rows if row[-1] == DUE_SOON)],
        ["Scheduled", sum(1 for row in rows if row[-1] == SCHEDULED)],
    ]
    summary_table = Table(summary_data, colWidths=[200, 200])
    summary_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('BACKGROUND', (0, 0), (-1, -1), colors.beige),
        ('GRID', (0, 0), (-1, -1), 1, colors.black)
    ]))
    elements.append(summary_table)
    elements.append(Spacer(1, 20))

    if rows:
        table = Table([MAINTENANCE_HISTORY_HEADERS] + [
            [row[0][:30], row[1][:30]] + row[2:] for row in rows
        ], colWidths=[150, 150, 80, 90, 90, 80])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 10),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
            ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
            ('FONTSIZE', (0, 1), (-1, -1), 8),
        ]))
        elements.append(table)

    doc.build(elements)
    buffer.seek(0)

    return send_file(
        buffer,
        as_attachment=True,
        download_name=f'maintenance-history-{date.today().isoformat()}.pdf',
        mimetype='application/pdf'
    )

def parts_usage_query():
    category = request.args.get('category', '').strip()
    query = Part.query
    if category:
        query = query.filter(Part.category == category)
    return query.order_by(Part.part_name.asc()).all()

PARTS_USAGE_HEADERS = ['Part Number', 'Part Name', 'Manufacturer', 'Category', 'Current Stock',
                       'Minimum Stock', 'Unit Cost', 'Total Value', 'Status']

@app.route('/reports/parts-usage')
@login_required
def parts_usage(ctx):
    parts = parts_usage_query()
    categories = [
        row[0] for row in db.session.query(Part.category)
        .filter(Part.category.isnot(None), Part.category != '')
        .distinct()
        .order_by(Part.category)
        .all()
    ]
    total_value = sum(p.total_value for p in parts)
    low_stock = sum(1 for p in parts if p.is_low_stock)
    return render_template('parts_usage.html', parts=parts, categories=categories,
                           total_value=total_value, low_stock=low_stock, args=request.args.to_dict())

@app.route('/reports/parts-usage/export')
@login_required
def parts_usage_export(ctx):
    parts = parts_usage_query()
    if not parts:
        flash("No data to export", "error")
        return redirect(url_for('parts_usage', **request.args.to_dict()))

    rows = [
        [
            p.part_number or '-',
            p.part_name or '-',
            p.manufacturer.manufacturer_name if p.manufacturer else '-',
            p.category or '-',
            p.current_stock or 0,
            p.minimum_stock or 0,
            money_filter(p.unit_cost),
            money_filter(p.total_value),
            p.stock_status,
        ]
        for p in parts
    ]
    return csv_file(PARTS_USAGE_HEADERS, rows, f'parts-usage-{date.today().isoformat()}.csv')

# ---------------- APP ENTRY ----------------
def populate_fake_data():
    # Check if data already exists
    if User.query.count() > 0:
        return

    today = date.today()

    users = [
        User(name='Admin User', email='admin@example.com', password_hash=generate_password_hash('admin1234'), role='Admin'),
        User(name='Dana Physicist', email='dana@example.com', password_hash=generate_password_hash('changeme'), role='User', must_change_password=True),
    ]
    db.session.add_all(users)

    makers = [
        Manufacturer(manufacturer_code='SIE', manufacturer_name='Siemens Healthineers', phone='+49 9131 840', website='https://www.siemens-healthineers.com'),
        Manufacturer(manufacturer_code='GE', manufacturer_name='GE HealthCare', phone='+1 866 281 7545', website='https://www.gehealthcare.com'),
        Manufacturer(manufacturer_code='PHI', manufacturer_name='Philips', website='https://www.philips.com/healthcare'),
    ]
    db.session.add_all(makers)

    customer = Customer(customer_code='CGH', customer_name='City General Hospital', city='Springfield', country='US')
    customer.locations = [
        Location(facility_code='CGH-1', department_name='Radiology'),
        Location(facility_code='CGH-1', department_name='Emergency'),
        Location(facility_code='CGH-2', department_name='Cardiology'),
    ]
    db.session.add(customer)
    db.session.flush()

    radiology, emergency, cardiology = customer.locations
    equipments = [
        Equipment(inventory_number='INV-0001', equipment_name='MRI Scanner 1.5T', equipment_type='MRI', manufacturer=makers[0], location=radiology, model_number='MAGNETOM Sola', risk_level='HIGH', status='Active', warranty_expiry=today + timedelta(days=20)),
        Equipment(inventory_number='INV-0002', equipment_name='CT Scanner 128', equipment_type='CT', manufacturer=makers[1], location=radiology, model_number='Revolution EVO', risk_level='HIGH', status='Active', warranty_expiry=today + timedelta(days=400)),
        Equipment(inventory_number='INV-0003', equipment_name='Mobile X-Ray', equipment_type='X-Ray', manufacturer=makers[2], location=emergency, model_number='MobileDiagnost wDR', risk_level='MEDIUM', status='Under Maintenance'),
        Equipment(inventory_number='INV-0004', equipment_name='Ultrasound Cart', equipment_type='Ultrasound', manufacturer=makers[2], location=cardiology, model_number='EPIQ Elite', risk_level='LOW', status='Active'),
        Equipment(inventory_number='INV-0005', equipment_name='Legacy Fluoroscopy', equipment_type='Fluoroscopy', manufacturer=makers[0], location=radiology, risk_level='MEDIUM', status='Decommissioned'),
    ]
    db.session.add_all(equipments)

    schedules = [
        Schedule(equipment=equipments[0], maintenance_type='Helium level check', frequency='Weekly', last_performed=today - timedelta(days=9), next_due=today - timedelta(days=2)),
        Schedule(equipment=equipments[0], maintenance_type='Coil QA', frequency='Monthly', last_performed=today - timedelta(days=20), next_due=today + timedelta(days=10)),
        Schedule(equipment=equipments[1], maintenance_type='Tube warm-up calibration', frequency='Daily', last_performed=today - timedelta(days=1), next_due=today),
        Schedule(equipment=equipments[1], maintenance_type='Dosimetry survey', frequency='Annual', last_performed=today - timedelta(days=200), next_due=today + timedelta(days=165)),
        Schedule(equipment=equipments[2], maintenance_type='Battery replacement', frequency='As Needed', next_due=today + timedelta(days=45)),
        Schedule(equipment=equipments[3], maintenance_type='Probe inspection', frequency='Quarterly', last_performed=today - timedelta(days=80), next_due=today + timedelta(days=12)),
    ]
    db.session.add_all(schedules)

    techs = [
        Technician(technician_code='T-001', first_name='Alex', last_name='Morgan', email='alex@example.com', specialization='MRI'),
        Technician(technician_code='T-002', first_name='Sam', last_name='Rivera', email='sam@example.com', specialization='CT / X-Ray'),
    ]
    db.session.add_all(techs)

    db.session.add_all([
        WorkOrder(workorder_number='WO-1000000000001', equipment=equipments[2], workorder_type='Corrective', priority='High', requested_by='ER Charge Nurse', problem_description='Detector panel fails to pair with console', status='In Progress', assigned_technician=techs[1]),
        WorkOrder(workorder_number='WO-1000000000002', equipment=equipments[0], workorder_type='Preventive', priority='Medium', requested_by='Radiology Lead', problem_description='Quarterly preventive maintenance visit', status='Open'),
        WorkOrder(workorder_number='WO-1000000000003', equipment=equipments[1], workorder_type='Calibration', priority='Low', requested_by='Physics Team', problem_description='Annual CTDI calibration performed', status='Completed', completion_date=today, labor_hours=3, labor_cost=240.0, parts_cost=0.0, total_cost=240.0),
    ])

    db.session.add_all([
        Part(part_number='P-1001', part_name='Cold head filter', equipment=equipments[0], manufacturer=makers[0], category='Filters', unit_cost=85.0, current_stock=4, minimum_stock=2),
        Part(part_number='P-1002', part_name='X-Ray tube', equipment=equipments[1], manufacturer=makers[1], category='Tubes', unit_cost=45000.0, current_stock=1, minimum_stock=1),
        Part(part_number='P-1003', part_name='Detector battery', equipment=equipments[2], manufacturer=makers[2], category='Batteries', unit_cost=320.0, current_stock=0, minimum_stock=2),
    ])

    db.session.commit()

if __name__ == '__main__':
    # Create tables if not exist
    with app.app_context():
        db.create_all()
        populate_fake_data()
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 5000)), debug=os.getenv('DEBUG', 'true').lower() == 'true')
