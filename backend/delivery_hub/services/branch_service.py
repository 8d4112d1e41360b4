from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch
from ..validation import clean_text
from .access_policy import CallerContext, authorize, scoped_branch_id
from .concurrency import atomic


def create_branch(
    name: str,
    address: str | None = None,
    contact_person: str | None = None,
    contact_number: str | None = None,
    email: str | None = None,
) -> Branch:
    """Used by `flask system init` and tests; there is no HTTP surface for it."""
    name = clean_text(name, 100)
    if not name:
        raise ValidationError("Branch name is required")

    def _op():
        if db.session.query(Branch.id).filter_by(name=name).first():
            raise ConflictError("Branch name already exists")

        branch = Branch(
            name=name,
            address=clean_text(address, 200),
            contact_person=clean_text(contact_person, 100),
            contact_number=clean_text(contact_number, 20),
            email=clean_text(email, 255),
        )
        db.session.add(branch)
        db.session.flush()
        return branch

    return atomic(_op)


def list_branches(caller: CallerContext) -> list[dict]:
    """Branch users only see their own branch."""
    authorize(caller, "branch.view")
    query = db.session.query(Branch)
    own = scoped_branch_id(caller)
    if own is not None:
        query = query.filter(Branch.id == own)
    return [b.to_dict() for b in query.order_by(Branch.name.asc()).all()]


def get_branch(branch_id: int, caller: CallerContext) -> dict:
    authorize(caller, "branch.view")
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFoundError("Branch not found")
    return branch.to_dict()
