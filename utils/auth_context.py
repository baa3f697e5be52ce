from functools import wraps
from flask import g
from models import db
from models.customer import Customer
from models.user import User
from security.session import get_session_from_request
from utils.errors import NotFound, Unauthenticated

def load_current_user():
    g.user = None
    g.session = None
    g.pop("customer", None)
    sess = get_session_from_request()
    if not sess:
        return
    user = db.session.get(User, sess.user_id)
    if user is None or not user.is_active:
        return
    g.session = sess
    g.user = user

def current_user() -> User:
    user = getattr(g, "user", None)
    if user is None:
        raise Unauthenticated()
    return user

def current_customer() -> Customer:
    """Customer profile of the acting user; 404 when the user has none."""
    user = current_user()
    if "customer" not in g:
        g.customer = Customer.query.filter_by(user_id=user.id).first()
    if g.customer is None:
        raise NotFound("Customer profile", message="Customer profile not found")
    return g.customer

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        current_user()
        return fn(*args, **kwargs)
    return wrapper
