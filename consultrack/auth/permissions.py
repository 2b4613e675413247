__ENTITIES__ = set()

ACTIONS = {
    'create',
    'view',
    'edit',
    'delete',
    'approve',
}


def _process_class(cls, name):
    if not name:
        name = cls.__name__
    __ENTITIES__.add(name)
    return cls


def register_entity(cls=None, /, *, name: str = None):
    def _decorate(klass):
        return _process_class(klass, name)

    if cls is None:
        return _decorate

    return _decorate(cls)


def generate_permissions():
    return sorted([
        f"{ent}.*.{act}" for act in ACTIONS for ent in __ENTITIES__
    ])


def generate_base_roles():
    return {
        'Admin': generate_permissions(),
        'Staffing Manager': [
            "Assignment.*.create",
            "Assignment.*.view",
            "Assignment.*.edit",
            "Assignment.*.delete",
            "Client.*.view",
            "Consultant.*.view",
            "Project.*.view",
            "Report.*.view",
        ],
        'Approver': [
            "Assignment.*.view",
            "Assignment.*.approve",
            "Report.*.view",
        ],
        # Consultants log their own time
        'Consultant': [
            "Assignment.*.view",
            "Assignment.*.edit",
        ],
        # Default Role w/ No-Permissions
        'Default': [],
    }


def role_permissions(role_name: str | None) -> frozenset[str]:
    roles = generate_base_roles()
    return frozenset(roles.get(role_name) or roles['Default'])
