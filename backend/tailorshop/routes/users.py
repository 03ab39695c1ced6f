from __future__ import annotations
from flask import Blueprint, g, request
from tailorshop import get_db
from tailorshop.decorators.auth import require_identity
from tailorshop.services import accounts, queries
from tailorshop.utils.listing import paginated_list

users_bp = Blueprint('users', __name__)


@users_bp.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    return accounts.authenticate(get_db(), data.get('username'), data.get('password'))


@users_bp.get('/me')
@require_identity
def me():
    return accounts.current_user(get_db(), g.identity)


@users_bp.get('')
@require_identity
def list_users():
    users = queries.list_users(get_db(), g.identity)
    return paginated_list(users, queries.user_json)


@users_bp.get('/search/<name>')
@require_identity
def search_users(name: str):
    users = queries.search_users(get_db(), g.identity, name)
    return paginated_list(users, queries.user_json)


@users_bp.get('/shops')
@require_identity
def list_shops():
    return {'data': queries.list_shops(get_db(), g.identity)}


@users_bp.get('/<int:user_id>')
@require_identity
def get_user(user_id: int):
    return queries.get_user(get_db(), g.identity, user_id)


@users_bp.post('')
@require_identity
def create_user():
    return accounts.create_user(get_db(), g.identity, request.get_json(silent=True)), 201


@users_bp.put('/<int:user_id>')
@require_identity
def update_details(user_id: int):
    return accounts.update_details(get_db(), g.identity, user_id, request.get_json(silent=True))


@users_bp.put('/<int:user_id>/password')
@require_identity
def update_password(user_id: int):
    data = request.get_json(silent=True) or {}
    return accounts.update_password(get_db(), g.identity, user_id, data.get('password'))


@users_bp.put('/<int:user_id>/shops')
@require_identity
def update_shops(user_id: int):
    data = request.get_json(silent=True) or {}
    return accounts.update_shops(get_db(), g.identity, user_id, data.get('shops'))


@users_bp.delete('/<int:user_id>')
@require_identity
def delete_user(user_id: int):
    return accounts.delete_user(get_db(), g.identity, user_id)
