import os, sys, pytest
# Ensure backend directory is on path so 'tailorshop' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import tailorshop
from tailorshop import create_app, get_db
from tailorshop.models.user import Base
# Import all model modules to ensure tables are registered before create_all
import tailorshop.models.customer  # noqa: F401
import tailorshop.models.order  # noqa: F401
import tailorshop.models.audit  # noqa: F401

@pytest.fixture(scope='session')
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret',
        'TESTING': True,
    })
    yield app

@pytest.fixture(autouse=True)
def fresh_schema(app_instance):
    # Every test starts from empty tables
    tailorshop.SessionLocal.remove()
    Base.metadata.drop_all(tailorshop.db_engine)
    Base.metadata.create_all(tailorshop.db_engine)
    yield
    tailorshop.SessionLocal.remove()

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def db(app_instance):
    """Session inside an application context, for calling services directly."""
    with app_instance.app_context():
        yield get_db()
