"""Route tests against the Flask app on an in-memory database."""

import csv
import io
from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app import populate_fake_data
from models import db, User, Equipment, Schedule, WorkOrder, Technician, Customer, Location, Part
from conftest import login


def redirects_to(response, path):
    return response.status_code == 302 and response.headers['Location'].endswith(path)


class TestAuth:
    """Sign-in, gating and password changes."""

    def test_pages_require_login(self, client):
        """Anonymous visitors are sent to the login screen."""
        for path in ('/dashboard', '/equipment', '/maintenance', '/alerts', '/reports'):
            assert redirects_to(client.get(path), '/login')

    def test_bad_credentials(self, client, staff):
        response = login(client, 'staff@example.com', 'wrong-password')
        assert response.status_code == 401
        assert b'Invalid credentials!' in response.data

    def test_login_and_logout(self, client, staff):
        assert redirects_to(login(client, 'STAFF@example.com', 'staff-password'), '/dashboard')
        assert client.get('/dashboard').status_code == 200
        assert redirects_to(client.get('/logout'), '/login')
        assert redirects_to(client.get('/dashboard'), '/login')

    def test_register(self, client):
        response = client.post('/register', data={
            'name': 'New Person', 'email': 'new@example.com',
            'password': 'long-password', 'confirm_password': 'long-password',
        })
        assert redirects_to(response, '/login')
        user = User.query.filter_by(email='new@example.com').one()
        assert user.role == 'User'
        assert user.must_change_password is False

    def test_register_rejects_mismatch(self, client):
        response = client.post('/register', data={
            'name': 'New Person', 'email': 'new@example.com',
            'password': 'long-password', 'confirm_password': 'other-password',
        })
        assert response.status_code == 400
        assert User.query.filter_by(email='new@example.com').first() is None

    def test_register_duplicate_email(self, client, staff):
        response = client.post('/register', data={
            'name': 'Copy', 'email': 'staff@example.com',
            'password': 'long-password', 'confirm_password': 'long-password',
        })
        assert response.status_code == 400
        assert b'Email already registered!' in response.data

    def test_admin_page_requires_admin(self, staff_client):
        assert redirects_to(staff_client.get('/admin/users'), '/dashboard')

    def test_admin_creates_user_who_must_change_password(self, admin_client):
        response = admin_client.post('/admin/users', data={
            'name': 'Temp', 'email': 'temp@example.com', 'role': 'User',
            'password': 'temp12', 'confirm_password': 'temp12',
        })
        assert redirects_to(response, '/admin/users')
        user = User.query.filter_by(email='temp@example.com').one()
        assert user.must_change_password is True

    def test_admin_temporary_password_minimum(self, admin_client):
        response = admin_client.post('/admin/users', data={
            'name': 'Temp', 'email': 'temp@example.com', 'role': 'User',
            'password': 'short', 'confirm_password': 'short',
        })
        assert response.status_code == 400
        assert User.query.filter_by(email='temp@example.com').first() is None

    def test_must_change_password_gates_every_page(self, client, app):
        user = User(name='Temp', email='temp@example.com', role='User',
                    password_hash=generate_password_hash('temp12'), must_change_password=True)
        db.session.add(user)
        db.session.commit()

        assert redirects_to(login(client, 'temp@example.com', 'temp12'), '/change-password')
        assert redirects_to(client.get('/dashboard'), '/change-password')
        assert redirects_to(client.get('/equipment'), '/change-password')
        assert client.get('/change-password').status_code == 200

        response = client.post('/change-password', data={
            'new_password': 'a-new-password', 'confirm_password': 'a-new-password',
        })
        assert redirects_to(response, '/dashboard')
        assert user.must_change_password is False
        assert user.password_changed_at is not None
        assert client.get('/dashboard').status_code == 200

    def test_change_password_rejects_short(self, staff_client, staff):
        response = staff_client.post('/change-password', data={
            'new_password': 'short', 'confirm_password': 'short',
        })
        assert response.status_code == 400
        assert login(staff_client, 'staff@example.com', 'staff-password').status_code == 302


class TestMaintenance:
    """Schedule pages and the maintenance-performed rollover."""

    def test_create_schedule(self, admin_client, equipment):
        response = admin_client.post('/maintenance/new', data={
            'equipment_id': str(equipment.id),
            'maintenance_type': 'Helium level check',
            'frequency': 'Weekly',
            'next_due': '2024-07-01',
            'is_active': 'true',
        })
        assert redirects_to(response, '/maintenance')
        schedule = Schedule.query.one()
        assert schedule.next_due == date(2024, 7, 1)
        assert schedule.created_by == 'admin@example.com'

    def test_create_schedule_invalid(self, admin_client, equipment):
        response = admin_client.post('/maintenance/new', data={
            'equipment_id': str(equipment.id),
            'maintenance_type': '',
            'frequency': 'Weekly',
        })
        assert response.status_code == 400
        assert Schedule.query.count() == 0

    def test_list_shows_schedules(self, admin_client, make_schedule):
        make_schedule(maintenance_type='Coil QA')
        response = admin_client.get('/maintenance')
        assert response.status_code == 200
        assert b'Coil QA' in response.data

    def test_list_empty(self, admin_client):
        assert b'No schedules found' in admin_client.get('/maintenance').data

    def test_complete_rolls_over(self, admin_client, make_schedule):
        schedule = make_schedule(frequency='Monthly', next_due=date(2024, 1, 31))
        response = admin_client.post(f'/maintenance/{schedule.id}/complete', data={'completed_on': '2024-01-31'})
        assert redirects_to(response, '/maintenance')
        assert schedule.last_performed == date(2024, 1, 31)
        assert schedule.next_due == date(2024, 2, 29)

    def test_complete_defaults_to_today(self, admin_client, make_schedule):
        schedule = make_schedule(frequency='Weekly')
        admin_client.post(f'/maintenance/{schedule.id}/complete')
        assert schedule.last_performed == date.today()
        assert schedule.next_due == date.today() + timedelta(days=7)

    def test_complete_as_needed_is_rejected(self, admin_client, make_schedule):
        due = date.today() + timedelta(days=45)
        schedule = make_schedule(frequency='As Needed', next_due=due)
        response = admin_client.post(f'/maintenance/{schedule.id}/complete', follow_redirects=True)
        assert b'As Needed schedules have no automatic next due date' in response.data
        assert schedule.next_due == due
        assert schedule.last_performed is None

    def test_complete_follows_local_next(self, admin_client, make_schedule, equipment):
        schedule = make_schedule()
        response = admin_client.post(f'/maintenance/{schedule.id}/complete',
                                     data={'next': f'/equipment/{equipment.id}'})
        assert redirects_to(response, f'/equipment/{equipment.id}')

    def test_complete_ignores_external_next(self, admin_client, make_schedule):
        schedule = make_schedule()
        response = admin_client.post(f'/maintenance/{schedule.id}/complete',
                                     data={'next': '//evil.example.com/'})
        assert redirects_to(response, '/maintenance')

    def test_complete_missing_schedule(self, admin_client):
        assert admin_client.post('/maintenance/999/complete').status_code == 404

    def test_complete_rejects_malformed_date(self, admin_client, make_schedule):
        """A malformed completion date is reported and nothing is saved."""
        schedule = make_schedule(frequency='Monthly', next_due=date(2030, 1, 1))
        response = admin_client.post(f'/maintenance/{schedule.id}/complete',
                                     data={'completed_on': '2024-13-45'}, follow_redirects=True)
        assert b'Completed on: Not a valid date value.' in response.data
        assert schedule.last_performed is None
        assert schedule.next_due == date(2030, 1, 1)

    def test_interval_is_labelled_informational(self, admin_client, make_schedule):
        """The schedule form says the day interval does not drive rollover."""
        schedule = make_schedule(frequency='As Needed', frequency_interval=45)
        body = admin_client.get(f'/maintenance/{schedule.id}/edit').get_data(as_text=True)
        assert 'Interval in days (informational, not used for rollover)' in body
        assert 'value="45"' in body


class TestCalendar:
    """Month view of due dates."""

    def test_requested_month(self, admin_client, make_schedule):
        make_schedule(maintenance_type='Coil QA', next_due=date(2024, 2, 29))
        body = admin_client.get('/schedule?month=2024-02').get_data(as_text=True)
        assert 'Coil QA' in body
        assert '2024-01' in body
        assert '2024-03' in body

    @pytest.mark.parametrize('month', ['9999-12', '0001-01', '2024-13', 'garbage'])
    def test_out_of_range_month_falls_back(self, admin_client, month):
        """Months without a neighbour in the date range show the current month."""
        response = admin_client.get(f'/schedule?month={month}')
        assert response.status_code == 200
        assert f"<strong>{date.today().strftime('%B %Y')}</strong>" in response.get_data(as_text=True)


class TestCsrf:
    """Form posts carry a CSRF token."""

    def test_post_without_token_rejected(self, app, client, staff):
        app.config['WTF_CSRF_ENABLED'] = True
        response = client.post('/login', data={'email': 'staff@example.com', 'password': 'staff-password'})
        assert response.status_code == 400

    def test_pages_render_token(self, client):
        assert b'name="csrf_token"' in client.get('/login').data


class TestAlertsAndDashboard:
    """Alert listing and dashboard statistics."""

    def test_alerts_listed_by_severity(self, admin_client, make_schedule, equipment):
        overdue = make_schedule(maintenance_type='Helium check', next_due=date.today() - timedelta(days=2))
        soon = make_schedule(maintenance_type='Coil QA', next_due=date.today() + timedelta(days=5))
        make_schedule(maintenance_type='Dosimetry', next_due=date.today() + timedelta(days=200))
        equipment.warranty_expiry = date.today() + timedelta(days=10)
        db.session.commit()

        body = admin_client.get('/alerts').get_data(as_text=True)
        assert f'id="overdue-{overdue.id}"' in body
        assert f'id="due-soon-{soon.id}"' in body
        assert f'id="warranty-{equipment.id}"' in body
        assert 'Dosimetry' not in body
        assert body.index(f'overdue-{overdue.id}') < body.index(f'warranty-{equipment.id}') \
            < body.index(f'due-soon-{soon.id}')

    def test_no_alerts(self, admin_client):
        assert b'No active alerts' in admin_client.get('/alerts').data

    def test_inactive_schedule_raises_no_alert(self, admin_client, make_schedule):
        make_schedule(next_due=date.today() - timedelta(days=2), is_active=False)
        assert b'No active alerts' in admin_client.get('/alerts').data

    def test_dashboard_counts(self, admin_client, make_schedule, equipment):
        make_schedule(next_due=date.today())
        make_schedule(next_due=date.today() - timedelta(days=3))
        make_schedule(next_due=date.today() + timedelta(days=3))
        db.session.add_all([
            WorkOrder(workorder_number='WO-1', equipment=equipment, workorder_type='Corrective',
                      priority='High', status='Open'),
            WorkOrder(workorder_number='WO-2', equipment=equipment, workorder_type='Preventive',
                      priority='Low', status='Completed', completion_date=date.today()),
        ])
        db.session.commit()

        body = admin_client.get('/dashboard').get_data(as_text=True)
        assert '<td id="stat-equipment">1</td>' in body
        assert '<td id="stat-work-orders">1</td>' in body
        assert '<td id="stat-overdue">2</td>' in body
        assert '<td id="stat-completed">1</td>' in body


class TestRecords:
    """CRUD pages for equipment, work orders, technicians, customers and parts."""

    def test_create_equipment(self, admin_client):
        response = admin_client.post('/equipment/new', data={
            'inventory_number': 'INV-42', 'equipment_name': 'CT Scanner',
            'equipment_type': 'CT', 'status': 'Active', 'risk_level': 'HIGH',
            'warranty_expiry': '2026-01-01',
        })
        eq = Equipment.query.filter_by(inventory_number='INV-42').one()
        assert redirects_to(response, f'/equipment/{eq.id}')
        assert eq.warranty_expiry == date(2026, 1, 1)
        assert eq.created_by == 'admin@example.com'

    def test_equipment_search(self, admin_client, equipment):
        assert b'MRI Scanner' in admin_client.get('/equipment?search=mri').data
        assert b'MRI Scanner' not in admin_client.get('/equipment?search=ultrasound').data

    def test_edit_equipment(self, admin_client, equipment):
        form = admin_client.get(f'/equipment/{equipment.id}/edit')
        assert form.status_code == 200
        response = admin_client.post(f'/equipment/{equipment.id}/edit', data={
            'inventory_number': 'INV-1', 'equipment_name': 'MRI Scanner 3T',
            'equipment_type': 'MRI', 'status': 'Under Maintenance',
        })
        assert redirects_to(response, f'/equipment/{equipment.id}')
        assert equipment.equipment_name == 'MRI Scanner 3T'
        assert equipment.status == 'Under Maintenance'

    def test_equipment_detail_missing(self, admin_client):
        assert admin_client.get('/equipment/999').status_code == 404

    def test_create_work_order(self, admin_client, equipment):
        response = admin_client.post('/work-orders/new', data={
            'equipment_id': str(equipment.id), 'workorder_type': 'Corrective',
            'priority': 'High', 'requested_by': 'Radiology Lead',
            'problem_description': 'Gradient coil overheating during scans',
        })
        assert redirects_to(response, '/work-orders')
        order = WorkOrder.query.one()
        assert order.status == 'Open'
        assert order.workorder_number.startswith('WO-')

    def test_completing_work_order_sets_completion_date(self, admin_client, equipment):
        order = WorkOrder(workorder_number='WO-7', equipment=equipment, workorder_type='Corrective',
                          priority='High', status='In Progress')
        db.session.add(order)
        db.session.commit()
        response = admin_client.post(f'/work-orders/{order.id}/edit', data={
            'status': 'Completed', 'priority': 'High', 'labor_cost': '100', 'parts_cost': '50',
        })
        assert redirects_to(response, '/work-orders')
        assert order.completion_date == date.today()
        assert order.total_cost == 150

    def test_delete_technician_unassigns_work_orders(self, admin_client, equipment):
        tech = Technician(technician_code='T-1', first_name='Alex', last_name='Morgan')
        order = WorkOrder(workorder_number='WO-8', equipment=equipment, workorder_type='Corrective',
                          priority='High', assigned_technician=tech)
        db.session.add_all([tech, order])
        db.session.commit()

        assert redirects_to(admin_client.post(f'/technicians/{tech.id}/delete'), '/technicians')
        assert Technician.query.count() == 0
        assert order.assigned_technician_id is None

    def test_customer_edit_replaces_locations(self, admin_client, equipment):
        customer = Customer(customer_code='CGH', customer_name='City General')
        radiology = Location(department_name='Radiology', facility_code='F1')
        emergency = Location(department_name='Emergency')
        customer.locations = [radiology, emergency]
        db.session.add(customer)
        db.session.commit()
        equipment.location = emergency
        db.session.commit()
        radiology_id = radiology.id

        response = admin_client.post(f'/customers/{customer.id}/edit', data={
            'customer_code': 'CGH', 'customer_name': 'City General',
            'facility_code': ['F1', 'F2'],
            'department_name': ['Radiology', 'Cardiology'],
        })
        assert redirects_to(response, '/customers')
        names = sorted(loc.department_name for loc in Location.query.all())
        assert names == ['Cardiology', 'Radiology']
        assert Location.query.filter_by(department_name='Radiology').one().id == radiology_id
        assert equipment.location_id is None

    def test_customer_locations_json(self, admin_client):
        customer = Customer(customer_code='CGH', customer_name='City General')
        customer.locations = [Location(department_name='Radiology'), Location(department_name='Cardiology')]
        db.session.add(customer)
        db.session.commit()
        response = admin_client.get(f'/customers/{customer.id}/locations')
        assert [row['department_name'] for row in response.get_json()] == ['Cardiology', 'Radiology']

    def test_part_create_and_delete(self, admin_client):
        response = admin_client.post('/parts-inventory/new', data={
            'part_number': 'P-1', 'part_name': 'Cold head filter', 'unit_cost': '85', 'minimum_stock': '2',
        })
        assert redirects_to(response, '/parts-inventory')
        part = Part.query.one()
        assert part.current_stock == 0
        assert part.stock_status == 'Low Stock'
        assert redirects_to(admin_client.post(f'/parts-inventory/{part.id}/delete'), '/parts-inventory')
        assert Part.query.count() == 0


class TestReports:
    """Report pages and exports."""

    def test_maintenance_history_csv(self, admin_client, make_schedule):
        make_schedule(maintenance_type='Coil QA', frequency='Monthly',
                      last_performed=date(2024, 1, 10), next_due=date.today() - timedelta(days=1))
        make_schedule(maintenance_type='Dosimetry', frequency='Annual',
                      last_performed=date(2024, 3, 5), next_due=date.today() + timedelta(days=200))

        response = admin_client.get('/reports/maintenance-history/export')
        assert response.status_code == 200
        assert response.mimetype == 'text/csv'
        assert f'maintenance-history-{date.today().isoformat()}.csv' in response.headers['Content-Disposition']

        text = response.get_data(as_text=True)
        lines = text.split('\n')
        assert lines[0] == '"Equipment","Maintenance Type","Frequency","Last Performed","Next Due","Status"'
        assert '\r' not in text
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[1][:4] == ['MRI Scanner', 'Dosimetry', 'Annual', '03/05/2024']
        assert rows[1][5] == 'Scheduled'
        assert rows[2][1] == 'Coil QA'
        assert rows[2][5] == 'Overdue'

    def test_maintenance_history_date_range(self, admin_client, make_schedule):
        make_schedule(maintenance_type='Coil QA', last_performed=date(2024, 1, 10))
        make_schedule(maintenance_type='Dosimetry', last_performed=date(2024, 3, 5))
        response = admin_client.get('/reports/maintenance-history/export?start_date=2024-02-01')
        rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
        assert [row[1] for row in rows[1:]] == ['Dosimetry']

    def test_empty_export_redirects(self, admin_client):
        response = admin_client.get('/reports/maintenance-history/export?start_date=2024-02-01')
        assert response.status_code == 302
        assert '/reports/maintenance-history' in response.headers['Location']
        assert 'start_date=2024-02-01' in response.headers['Location']
        page = admin_client.get(response.headers['Location'])
        assert b'No data to export' in page.data

    def test_maintenance_history_pdf(self, admin_client, make_schedule):
        make_schedule(last_performed=date(2024, 1, 10))
        response = admin_client.get('/reports/maintenance-history/export/pdf')
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')

    def test_parts_usage_csv(self, admin_client):
        db.session.add_all([
            Part(part_number='P-1', part_name='Filter', category='Filters', unit_cost=85.0,
                 current_stock=4, minimum_stock=2),
            Part(part_number='P-2', part_name='Battery', category='Batteries', unit_cost=320.0,
                 current_stock=0, minimum_stock=2),
        ])
        db.session.commit()

        rows = list(csv.reader(io.StringIO(
            admin_client.get('/reports/parts-usage/export').get_data(as_text=True))))
        assert rows[0][0] == 'Part Number'
        assert rows[1] == ['P-2', 'Battery', '-', 'Batteries', '0', '2', '$320.00', '$0.00', 'Low Stock']
        assert rows[2] == ['P-1', 'Filter', '-', 'Filters', '4', '2', '$85.00', '$340.00', 'Active']

        filtered = admin_client.get('/reports/parts-usage/export?category=Filters').get_data(as_text=True)
        assert 'Battery' not in filtered

    def test_parts_usage_page(self, admin_client):
        db.session.add(Part(part_number='P-1', part_name='Filter', category='Filters',
                            unit_cost=85.0, current_stock=4, minimum_stock=2))
        db.session.commit()
        body = admin_client.get('/reports/parts-usage').get_data(as_text=True)
        assert '$340.00' in body


class TestSeededPages:
    """Every page renders against the demo data set."""

    @pytest.fixture
    def seeded_client(self, client):
        populate_fake_data()
        login(client, 'admin@example.com', 'admin1234')
        return client

    @pytest.mark.parametrize('path', [
        '/dashboard', '/alerts', '/schedule', '/equipment', '/equipment/new', '/equipment/1',
        '/equipment/1/edit', '/maintenance', '/maintenance/new', '/maintenance/1/edit',
        '/work-orders', '/work-orders/new', '/work-orders/1/edit', '/technicians', '/technicians/new',
        '/technicians/1/edit', '/manufacturers', '/manufacturers/new', '/manufacturers/1/edit',
        '/customers', '/customers/new', '/customers/1/edit', '/parts-inventory', '/parts-inventory/new',
        '/parts-inventory/1/edit', '/reports', '/reports/maintenance-history', '/reports/parts-usage',
        '/admin/users', '/change-password',
    ])
    def test_page_renders(self, seeded_client, path):
        assert seeded_client.get(path).status_code == 200

    def test_seed_is_idempotent(self, app):
        populate_fake_data()
        populate_fake_data()
        assert User.query.count() == 2
