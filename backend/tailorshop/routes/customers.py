from __future__ import annotations
from flask import Blueprint, g, request
from tailorshop import get_db
from tailorshop.decorators.auth import require_identity
from tailorshop.services import queries
from tailorshop.utils.listing import paginated

customers_bp = Blueprint('customers', __name__)


@customers_bp.get('')
@require_identity
def list_customers():
    q = queries.list_customers(get_db(), g.identity, request.args)
    return paginated(q, queries.customer_json)


@customers_bp.get('/search/<term>')
@require_identity
def search_customers(term: str):
    q = queries.search_customers(get_db(), g.identity, term)
    return paginated(q, queries.customer_json)


@customers_bp.get('/<int:customer_id>')
@require_identity
def get_customer(customer_id: int):
    return queries.get_customer(get_db(), g.identity, customer_id)
