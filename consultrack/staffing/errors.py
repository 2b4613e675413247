from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound


class AssignmentNotFound(NotFound):
    description = "Resource not found."


class InvalidAssignmentState(Conflict):
    description = "Operation not allowed in the assignment's current status."


class TransitionNotAllowed(InvalidAssignmentState):
    description = "Status transition not allowed."


class VersionConflict(Conflict):
    description = "Assignment was modified concurrently. Reload and retry."


class DuplicateAssignment(Conflict):
    description = "Consultant already has an assignment for this project."


class CurrencyMismatch(BadRequest):
    description = "Rates and budget must share a currency."


class ApproverMismatch(Forbidden):
    description = "Only the designated approver may decide this approval level."


class RecordNotFound(NotFound):
    description = "Resource not found."
