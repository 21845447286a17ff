"""
Management command to seed the default system roles.

Creates the five system roles (SuperAdmin, Admin, Manager, Technician,
User) with their hierarchy levels and permission sets. Run seed_permissions
first. This command is idempotent and safe to re-run.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.rbac.keys import RiskLevel
from apps.rbac.models import Permission, Role, User, UserRole
from apps.rbac.services import RBACService


ALL_PERMISSIONS = 'ALL'
NON_CRITICAL = 'NON_CRITICAL'


class Command(BaseCommand):
    help = 'Seed default system roles and their permissions (idempotent)'

    DEFAULT_ROLES = {
        'SuperAdmin': {
            'display_name': 'Super Administrator',
            'description': 'Unrestricted access to every feature, including critical operations',
            'level': 100,
            'color': '#E74C3C',
            'permissions': ALL_PERMISSIONS,
        },
        'Admin': {
            'display_name': 'Administrator',
            'description': 'Administrative access to everything except critical operations',
            'level': 80,
            'color': '#3498DB',
            'permissions': NON_CRITICAL,
        },
        'Manager': {
            'display_name': 'Manager',
            'description': 'Supervises employees, equipment, tickets, calendar and reports',
            'level': 50,
            'color': '#F39C12',
            'permissions': [
                'dashboard:view:all',
                'employees:view:all', 'employees:update:all', 'employees:view-passwords:all',
                'employees:manage-windows-accounts:all', 'employees:manage-qnap-accounts:all',
                'employees:manage-calipso-accounts:all', 'employees:manage-email-accounts:all',
                'equipment:view:all', 'equipment:update:all',
                'tickets:view:all', 'tickets:create:all', 'tickets:update:all', 'tickets:assign:all',
                'reports:view:all', 'reports:export:all',
                'calendar:view:all', 'calendar:create:all', 'calendar:update:all', 'calendar:delete:all',
                'areas:view:all', 'areas:create:all', 'areas:update:all',
                'zones:view:all', 'zones:create:all', 'zones:update:all',
                'printers:view:all', 'printers:update:all',
                'consumables:view:all', 'consumables:view-types:all', 'consumables:manage-stock:all',
                'daily_backups:view:all', 'daily_backups:manage:all', 'daily_backups:delete:all',
            ],
        },
        'Technician': {
            'display_name': 'Technician',
            'description': 'Works tickets and maintains equipment, printers and consumables',
            'level': 30,
            'color': '#2ECC71',
            'permissions': [
                'dashboard:view:all',
                'employees:view:all', 'employees:update:all',
                'employees:manage-windows-accounts:all', 'employees:manage-qnap-accounts:all',
                'employees:manage-calipso-accounts:all', 'employees:manage-email-accounts:all',
                'equipment:view:all', 'equipment:update:all', 'equipment:create:all',
                'tickets:view:all', 'tickets:update:all', 'tickets:create:all', 'tickets:delete:own',
                'inventory:view:all', 'inventory:update:all',
                'areas:view:all', 'zones:view:all',
                'printers:view:all', 'printers:create:all', 'printers:update:all',
                'consumables:view:all', 'consumables:create:all', 'consumables:update:all',
                'consumables:view-types:all', 'consumables:create-types:all', 'consumables:update-types:all',
                'consumables:manage-stock:all', 'consumables:manage-compatibility:all',
                'technician:assignable:all',
                'calendar:view:all', 'calendar:create:all', 'calendar:update:all', 'calendar:delete:own',
                'daily_backups:view:all', 'daily_backups:manage:all',
            ],
        },
        'User': {
            'display_name': 'User',
            'description': 'Opens tickets and manages their own calendar events',
            'level': 10,
            'color': '#95A5A6',
            'permissions': [
                'dashboard:view:all',
                'tickets:view:own', 'tickets:create:all',
                'calendar:view:own', 'calendar:create:all', 'calendar:update:own', 'calendar:delete:own',
                'daily_backups:view:own',
            ],
        },
    }

    def add_arguments(self, parser):
        parser.add_argument(
            '--admin-email',
            type=str,
            help='Create (or reuse) this user and give it the super role',
        )
        parser.add_argument(
            '--admin-password',
            type=str,
            help='Password for a newly created --admin-email user',
        )

    def resolve_permissions(self, selection):
        """Permission queryset or list for a role definition."""
        active = Permission.objects.active()
        if selection == ALL_PERMISSIONS:
            return list(active)
        if selection == NON_CRITICAL:
            return list(active.exclude(risk_level=RiskLevel.CRITICAL))

        permissions = []
        for name in selection:
            permission = Permission.objects.by_key(name)
            if permission is None:
                self.stdout.write(self.style.WARNING(f'  ⚠ Missing permission: {name} (run seed_permissions)'))
                continue
            permissions.append(permission)
        return permissions

    @transaction.atomic
    def handle(self, *args, **options):
        """Create or update the default roles."""
        if not Permission.objects.exists():
            raise CommandError('No permissions found. Run seed_permissions first.')

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding system roles...\n')

        for role_name, config in self.DEFAULT_ROLES.items():
            role = Role.objects_with_deleted.filter(name=role_name).first()
            attributes = {
                'display_name': config['display_name'],
                'description': config['description'],
                'level': config['level'],
                'color': config['color'],
                'is_system': True,
                'is_active': True,
                'deleted_at': None,
            }

            if role is None:
                role = Role.objects.create(name=role_name, **attributes)
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created role: {role_name} (level {role.level})'))
            else:
                changed = [field for field, value in attributes.items() if getattr(role, field) != value]
                if changed:
                    for field in changed:
                        setattr(role, field, attributes[field])
                    role.save()
                    updated_count += 1
                    self.stdout.write(self.style.WARNING(f'↻ Updated role: {role_name} ({", ".join(changed)})'))
                else:
                    self.stdout.write(self.style.HTTP_INFO(f'  Exists: {role_name}'))

            permissions = self.resolve_permissions(config['permissions'])
            current = {p.id for p in role.active_permissions()}
            wanted = {p.id for p in permissions}
            if current != wanted:
                RBACService.sync_role_permissions(role, permissions)
                self.stdout.write(f'    {len(wanted)} permissions synced')
            else:
                self.stdout.write(f'    {len(wanted)} permissions unchanged')

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} roles created, {updated_count} roles updated'
            )
        )

        admin_email = options.get('admin_email')
        if admin_email:
            self._seed_admin(admin_email, options.get('admin_password'))

    def _seed_admin(self, email, password):
        """Ensure a user holding the super role exists."""
        user = User.objects.by_email(email)
        if user is None:
            if not password:
                raise CommandError('--admin-password is required to create a new admin user')
            user = User.objects.create_user(email=email, password=password)
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))

        super_role = Role.objects.get(name=settings.RBAC_SUPER_ROLE_NAME)
        if UserRole.objects.filter(user=user, role=super_role, is_active=True).exists():
            self.stdout.write(self.style.HTTP_INFO(f'  {user.email} already holds {super_role.name}'))
            return

        RBACService.assign_role(user, super_role, is_primary=True, reason='Initial administrator')
        self.stdout.write(self.style.SUCCESS(f'✓ Assigned {super_role.name} to {user.email}'))
