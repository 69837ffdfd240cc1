"""Role and branch visibility rules.

Every admission, payment and installment read or write goes through an
``AccessScope`` so a Branch Admin only ever sees their branch and a Student
only ever sees their own admissions. Out-of-scope rows are simply absent from
query results, so lookups by id report "not found" rather than "forbidden".
"""
from typing import Optional

from institute_api import models
from institute_api.models import Role


class AccessScope:
    def __init__(self, branch_id: Optional[int] = None, student_id: Optional[int] = None, restricted: bool = False):
        self.branch_id = branch_id
        self.student_id = student_id
        self.restricted = restricted

    @classmethod
    def for_actor(cls, actor: models.User) -> "AccessScope":
        if actor.role == Role.BRANCH_ADMIN:
            return cls(branch_id=actor.branch_id, restricted=True)
        if actor.role == Role.STUDENT:
            return cls(student_id=actor.id, restricted=True)
        return cls()

    def narrow(self, branch_id: Optional[int] = None) -> "AccessScope":
        """Apply a caller-supplied branch filter; ignored for restricted actors."""
        if self.restricted or branch_id is None:
            return self
        return AccessScope(branch_id=branch_id, student_id=self.student_id)

    def admissions(self, query):
        if self.restricted and self.branch_id is None and self.student_id is None:
            # a Branch Admin with no branch sees nothing
            return query.filter(models.Admission.id.is_(None))
        if self.branch_id is not None:
            query = query.filter(models.Admission.branch_id == self.branch_id)
        if self.student_id is not None:
            query = query.filter(models.Admission.student_id == self.student_id)
        return query

    def payments(self, query):
        if self.restricted and self.branch_id is None and self.student_id is None:
            return query.filter(models.Payment.id.is_(None))
        if self.branch_id is not None:
            query = query.filter(models.Payment.branch_id == self.branch_id)
        if self.student_id is not None:
            query = query.filter(models.Payment.student_id == self.student_id)
        return query

    def allows(self, admission: models.Admission) -> bool:
        if self.restricted and self.branch_id is None and self.student_id is None:
            return False
        if self.branch_id is not None and admission.branch_id != self.branch_id:
            return False
        if self.student_id is not None and admission.student_id != self.student_id:
            return False
        return True
