"""
Management command to seed the permission catalog.

Creates the Permission records that define the access controls of the
helpdesk: users, roles, permissions, dashboard, employees, equipment,
inventory, printers, tickets, technicians, purchases, backups, daily
backups, consumables, replacements, areas, zones, calendar, admin,
reports and system. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.cache import bump_policy_version
from apps.rbac.keys import PermissionKey
from apps.rbac.models import Permission


class Command(BaseCommand):
    help = 'Seed the permission catalog (idempotent)'

    # (key, risk level, display name, description)
    CATALOG = [
        # User Management
        ('users:view:all', 'LOW', 'View Users', 'View the user list and basic user data'),
        ('users:create:all', 'MEDIUM', 'Create Users', 'Create user accounts and assign their roles'),
        ('users:update:all', 'MEDIUM', 'Update Users', 'Update existing users, including roles, permissions and locks'),
        ('users:delete:all', 'HIGH', 'Delete Users', 'Permanently remove user accounts'),

        # Role Management
        ('roles:view:all', 'LOW', 'View Roles', 'View the role hierarchy and role permissions'),
        ('roles:create:all', 'HIGH', 'Create Roles', 'Create custom roles with specific permissions'),
        ('roles:update:all', 'HIGH', 'Update Roles', 'Update roles, their permissions and configuration'),
        ('roles:delete:all', 'CRITICAL', 'Delete Roles', 'Delete custom roles (system roles are protected)'),
        ('roles:assign:all', 'HIGH', 'Assign Roles', 'Assign roles to users and remove them'),

        # Permission Management
        ('permissions:view:all', 'LOW', 'View Permissions', 'View every permission in the catalog'),
        ('permissions:create:all', 'CRITICAL', 'Create Permissions', 'Add custom permissions to the catalog'),

        # Dashboard
        ('dashboard:view:all', 'LOW', 'View Dashboard', 'Open the main dashboard with statistics and metrics'),

        # Employees
        ('employees:view:all', 'LOW', 'View Employees', 'View employees and their contact information'),
        ('employees:create:all', 'MEDIUM', 'Create Employees', 'Register employees with personal data and credentials'),
        ('employees:update:all', 'MEDIUM', 'Update Employees', 'Update employees, including system account passwords'),
        ('employees:delete:all', 'HIGH', 'Delete Employees', 'Remove employee records'),
        ('employees:view-passwords:all', 'HIGH', 'View Employee Passwords',
         'View the QNAP, Calipso and Windows passwords of employees'),
        ('employees:manage-windows-accounts:all', 'HIGH', 'Manage Windows Accounts',
         'Create, edit and delete employee Windows accounts'),
        ('employees:manage-qnap-accounts:all', 'HIGH', 'Manage QNAP Accounts',
         'Create, edit and delete employee QNAP accounts'),
        ('employees:manage-calipso-accounts:all', 'HIGH', 'Manage Calipso Accounts',
         'Create, edit and delete employee Calipso accounts'),
        ('employees:manage-email-accounts:all', 'HIGH', 'Manage Email Accounts',
         'Create, edit and delete employee email accounts'),

        # Equipment
        ('equipment:view:all', 'LOW', 'View Equipment', 'View computer equipment and its status'),
        ('equipment:create:all', 'MEDIUM', 'Create Equipment', 'Register new computer equipment'),
        ('equipment:update:all', 'MEDIUM', 'Update Equipment', 'Update equipment data, assignments and status'),
        ('equipment:delete:all', 'HIGH', 'Delete Equipment', 'Permanently retire equipment from the inventory'),

        # Inventory
        ('inventory:view:all', 'LOW', 'View Inventory', 'View inventory items and supplies'),
        ('inventory:create:all', 'MEDIUM', 'Create Inventory Items', 'Register new inventory items'),
        ('inventory:update:all', 'MEDIUM', 'Update Inventory Items', 'Update inventory quantities and item data'),
        ('inventory:delete:all', 'HIGH', 'Delete Inventory Items', 'Permanently remove inventory items'),

        # Printers
        ('printers:view:all', 'LOW', 'View Printers', 'View registered printers and their status'),
        ('printers:create:all', 'MEDIUM', 'Create Printers', 'Register new printers'),
        ('printers:update:all', 'MEDIUM', 'Update Printers', 'Update printer configuration and status'),
        ('printers:delete:all', 'HIGH', 'Delete Printers', 'Retire printers from the registry'),

        # Tickets
        ('tickets:view:all', 'LOW', 'View All Tickets', 'View every support ticket'),
        ('tickets:view:own', 'LOW', 'View Own Tickets', 'View only the tickets the user created'),
        ('tickets:create:all', 'LOW', 'Create Tickets', 'Open new support tickets'),
        ('tickets:update:all', 'MEDIUM', 'Update Tickets', 'Update any ticket, including status and assignment'),
        ('tickets:delete:all', 'HIGH', 'Delete Tickets', 'Delete any ticket'),
        ('tickets:assign:all', 'MEDIUM', 'Assign Tickets', 'Assign tickets to technicians or reassign them'),
        ('tickets:delete:own', 'MEDIUM', 'Delete Own Tickets', 'Delete only the tickets the user created'),

        # Technicians
        ('technician:assignable:all', 'LOW', 'Assignable Technician', 'Mark the user as a technician tickets can be assigned to'),

        # Purchases
        ('purchases:view:all', 'LOW', 'View Purchases', 'View completed purchases'),
        ('purchases:create:all', 'MEDIUM', 'Create Purchases', 'Register new purchase orders'),
        ('purchases:update:all', 'MEDIUM', 'Update Purchases', 'Update existing purchase orders'),
        ('purchases:delete:all', 'HIGH', 'Delete Purchases', 'Delete purchase records'),

        # Backups
        ('backups:view:all', 'LOW', 'View Backups', 'View the database backup history'),
        ('backups:create:all', 'MEDIUM', 'Create Backups', 'Generate new database backups'),
        ('backups:update:all', 'MEDIUM', 'Update Backups', 'Change backup configuration'),
        ('backups:delete:all', 'HIGH', 'Delete Backups', 'Delete stored backup files'),
        ('backups:download:all', 'HIGH', 'Download Backups', 'Download backup files'),
        ('backups:restore:all', 'CRITICAL', 'Restore Backups', 'Restore the database from a backup'),

        # Daily backups
        ('daily_backups:view:all', 'LOW', 'View Daily Backups', 'View the daily disk backup log'),
        ('daily_backups:view:own', 'LOW', 'View Own Daily Backups', 'View daily backups recorded by the user'),
        ('daily_backups:manage:all', 'MEDIUM', 'Manage Daily Backups', 'Mark disks as completed and keep the daily backup log'),
        ('daily_backups:delete:all', 'HIGH', 'Delete Daily Backups', 'Remove disks and states from the daily backup setup'),

        # Consumables
        ('consumables:view:all', 'LOW', 'View Consumables', 'View the consumables inventory (toners, cartridges)'),
        ('consumables:create:all', 'MEDIUM', 'Create Consumables', 'Register new consumables'),
        ('consumables:update:all', 'MEDIUM', 'Update Consumables', 'Update consumable quantities and data'),
        ('consumables:delete:all', 'HIGH', 'Delete Consumables', 'Remove consumables'),
        ('consumables:view-types:all', 'LOW', 'View Consumable Types', 'View the consumable type catalog'),
        ('consumables:create-types:all', 'MEDIUM', 'Create Consumable Types', 'Add consumable types to the catalog'),
        ('consumables:update-types:all', 'MEDIUM', 'Update Consumable Types', 'Edit consumable types'),
        ('consumables:delete-types:all', 'HIGH', 'Delete Consumable Types', 'Remove consumable types from the catalog'),
        ('consumables:manage-stock:all', 'MEDIUM', 'Manage Consumable Stock', 'Record stock entries, exits and adjustments'),
        ('consumables:manage-compatibility:all', 'MEDIUM', 'Manage Compatibility',
         'Manage which consumables fit which printers'),

        # Replacements
        ('replacements:view:all', 'LOW', 'View Replacements', 'View the equipment replacement history'),
        ('replacements:create:all', 'MEDIUM', 'Create Replacements', 'Record equipment replacements'),
        ('replacements:update:all', 'MEDIUM', 'Update Replacements', 'Update replacement records'),
        ('replacements:delete:all', 'HIGH', 'Delete Replacements', 'Delete replacement records'),

        # Areas
        ('areas:view:all', 'LOW', 'View Areas', 'View areas and departments'),
        ('areas:create:all', 'MEDIUM', 'Create Areas', 'Create areas and departments'),
        ('areas:update:all', 'MEDIUM', 'Update Areas', 'Update areas'),
        ('areas:delete:all', 'HIGH', 'Delete Areas', 'Delete areas'),

        # Zones
        ('zones:view:all', 'LOW', 'View Zones', 'View zones within areas'),
        ('zones:create:all', 'MEDIUM', 'Create Zones', 'Create zones within areas'),
        ('zones:update:all', 'MEDIUM', 'Update Zones', 'Update zones'),
        ('zones:delete:all', 'HIGH', 'Delete Zones', 'Delete zones'),

        # Calendar
        ('calendar:view:all', 'LOW', 'View All Events', 'View every scheduled event'),
        ('calendar:view:own', 'LOW', 'View Own Events', 'View events the user organizes or attends'),
        ('calendar:create:all', 'LOW', 'Create Events', 'Create calendar events'),
        ('calendar:update:all', 'MEDIUM', 'Update All Events', 'Update any calendar event'),
        ('calendar:update:own', 'LOW', 'Update Own Events', 'Update events the user created'),
        ('calendar:delete:all', 'MEDIUM', 'Delete All Events', 'Delete any calendar event'),
        ('calendar:delete:own', 'LOW', 'Delete Own Events', 'Delete events the user created'),

        # Administration
        ('admin:access:all', 'HIGH', 'Admin Access', 'Open the administration panel'),
        ('admin:view:all', 'HIGH', 'Admin View', 'View every section of the administration panel, including audit logs'),
        ('admin:dashboard:view:all', 'MEDIUM', 'Admin Dashboard', 'View the administrative dashboard'),
        ('superadmin:access:all', 'CRITICAL', 'Super Admin Access', 'Unrestricted system access'),

        # Purchase requests
        ('purchase-requests:view:all', 'LOW', 'View Purchase Requests', 'View pending and processed purchase requests'),
        ('purchase-requests:create:all', 'MEDIUM', 'Create Purchase Requests', 'Create purchase requests'),
        ('purchase-requests:update:all', 'MEDIUM', 'Update Purchase Requests', 'Update or approve purchase requests'),
        ('purchase-requests:delete:all', 'HIGH', 'Delete Purchase Requests', 'Delete purchase requests'),

        # Module access
        ('technician:access:all', 'LOW', 'Technician Module', 'Open the technician module'),
        ('manager:access:all', 'MEDIUM', 'Manager Module', 'Open the management module'),

        # Reports
        ('reports:view:all', 'LOW', 'View Reports', 'View reports and statistics'),
        ('reports:export:all', 'MEDIUM', 'Export Reports', 'Export reports to Excel and PDF'),

        # System
        ('system:view:all', 'LOW', 'View System Status', 'Check server and database status'),
    ]

    # Categories that differ from the resource
    CATEGORY_OVERRIDES = {
        'superadmin': 'admin',
        'purchase-requests': 'purchases',
        'technician:access:all': 'access',
        'manager': 'access',
    }

    @classmethod
    def category_for(cls, key):
        return cls.CATEGORY_OVERRIDES.get(str(key), cls.CATEGORY_OVERRIDES.get(key.resource, key.resource))

    def add_arguments(self, parser):
        parser.add_argument(
            '--quiet-summary',
            action='store_true',
            help='Skip the per-category summary',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        """Create or update the whole catalog."""

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding permission catalog...\n')

        for name, risk_level, display_name, description in self.CATALOG:
            key = PermissionKey.parse(name)
            category = self.category_for(key)

            permission = Permission.objects.filter(
                resource=key.resource, action=key.action, scope=key.scope
            ).first()

            if permission is None:
                permission = Permission.objects.create(
                    resource=key.resource,
                    action=key.action,
                    scope=key.scope,
                    risk_level=risk_level,
                    display_name=display_name,
                    description=description,
                    category=category,
                    is_system=True,
                    is_active=True,
                )
                created_count += 1
                self.stdout.write(
                    self.style.SUCCESS(f'✓ Created: {permission.name}')
                )
                continue

            # Update fields if they changed
            wanted = {
                'risk_level': risk_level,
                'display_name': display_name,
                'description': description,
                'category': category,
                'is_system': True,
            }
            changed = [field for field, value in wanted.items() if getattr(permission, field) != value]

            if changed:
                for field in changed:
                    setattr(permission, field, wanted[field])
                permission.save()
                updated_count += 1
                self.stdout.write(
                    self.style.WARNING(f'↻ Updated: {permission.name} ({", ".join(changed)})')
                )
            else:
                self.stdout.write(
                    self.style.HTTP_INFO(f'  Exists: {permission.name}')
                )

        if created_count or updated_count:
            bump_policy_version()

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(self.CATALOG) - created_count - updated_count} unchanged'
            )
        )

        if options.get('quiet_summary'):
            return

        # Display summary by category
        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Category:')
        self.stdout.write('=' * 70)

        categories = Permission.objects.values_list('category', flat=True).distinct().order_by('category')

        for category in categories:
            perms = Permission.objects.filter(category=category).order_by('name')
            self.stdout.write(f'\n{category.upper()}:')
            for perm in perms:
                self.stdout.write(f'  • {perm.name:<40} {perm.risk_level:<9} {perm.display_name}')

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')
