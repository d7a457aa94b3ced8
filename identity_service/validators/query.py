from identity_service.models.enums import AuditAction, AuditStatus, UserRole

ALLOWED_SORT_FIELDS = {
    'created_at', 'updated_at', 'last_login_at', 'email', 'name'
}


def _get_int(args, name, default):
    try:
        return int(args.get(name, default))
    except (TypeError, ValueError):
        return default


def _paging(args):
    page = max(_get_int(args, 'page', 1), 1)
    per_page = _get_int(args, 'per_page', 20)
    if per_page <= 0:
        per_page = 20
    return page, min(per_page, 100)


def _parse_bool(value):
    if value is None or value == '':
        return None
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes'):
        return True
    if lowered in ('0', 'false', 'no'):
        return False
    raise ValueError('is_active must be a boolean')


def _enum_value(enum_cls, name, value):
    if not value:
        return None
    try:
        return enum_cls(value.strip().lower()).value
    except ValueError:
        raise ValueError(f'unknown {name}: {value}') from None


def parse_list_args(args):
    page, per_page = _paging(args)

    sort = args.get('sort', 'created_at:asc')
    if ':' in sort:
        field, order = sort.split(':', 1)
    else:
        field, order = sort, 'asc'
    if field not in ALLOWED_SORT_FIELDS:
        field = 'created_at'
    order = 'desc' if order == 'desc' else 'asc'

    return {
        'page': page,
        'per_page': per_page,
        'sort_field': field,
        'sort_order': order,
        'role': _enum_value(UserRole, 'role', args.get('role')),
        'is_active': _parse_bool(args.get('is_active')),
        'q': (args.get('q') or '').strip() or None,
    }


def parse_audit_args(args):
    page, per_page = _paging(args)
    return {
        'page': page,
        'per_page': per_page,
        'user_id': args.get('user_id') or None,
        'action': _enum_value(AuditAction, 'action', args.get('action')),
        'status': _enum_value(AuditStatus, 'status', args.get('status')),
    }
