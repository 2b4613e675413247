from flask import Blueprint, Response, abort
from webargs.flaskparser import parser, use_args

from . import commands
from . import schema
from .schema import ExtensionDecision
from .services import get_service
from ..auth.utils import Identity, authenticated, requires

blueprint = Blueprint("staffing", __name__)


@parser.error_handler
def handle_request_parsing_error(err, req, schema, *, error_status_code, error_headers):
    # Unwrap location from use_args error handler
    if 'json' in err.messages:
        err.messages = err.messages['json']
    elif 'querystring' in err.messages:
        err.messages = err.messages['querystring']
    abort(400, err)


def respond(response_schema, data, status: int = 200) -> Response:
    return Response(
        response_schema.dumps({'success': True, 'data': data}),
        status=status,
        content_type='application/json',
    )


@blueprint.get('')
@authenticated
@requires("Assignment.*.view")
@use_args(schema.AssignmentFilter(), location='querystring')
def list_assignments(identity: Identity, params: dict):
    """ List Assignments
    ---
    get:
      operationId: listAssignments
      tags:
        - assignment
      summary: List Assignments
      description: List the tenant's assignments, newest start date first.
      parameters:
        - in: query
          name: page
          required: false
          schema:
            type: integer
            default: 1
        - in: query
          name: page_size
          required: false
          schema:
            type: integer
            default: 25
        - in: query
          name: consultant_id
          required: false
          schema:
            type: integer
        - in: query
          name: client_id
          required: false
          schema:
            type: integer
        - in: query
          name: project_id
          required: false
          schema:
            type: integer
        - in: query
          name: status
          required: false
          schema:
            type: string
        - in: query
          name: active
          required: false
          description: Only confirmed or active assignments
          schema:
            type: boolean
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: ListAssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    page = params.pop('page')
    page_size = params.pop('page_size')
    paginated = get_service().list(identity.tenant_id, params, page=page, page_size=page_size)

    return respond(schema.ListAssignmentResponse(), {
        'pagination': {
            'page': paginated.page,
            'total_pages': paginated.pages,
            'total': paginated.total,
            'page_size': paginated.per_page,
        },
        'items': paginated.items,
    })


@blueprint.post('')
@authenticated
@requires("Assignment.*.create")
@use_args(schema.CreateAssignmentRequest(), location='json')
def create_assignment(identity: Identity, data: dict):
    """ Create Assignment
    ---
    post:
      operationId: createAssignment
      tags:
        - assignment
      summary: Create Assignment
      description: >
        Create an assignment in `proposed` status. Approval levels are
        attached when supplied or when the approval policy requires them.
      requestBody:
        required: true
        content:
          application/json:
            schema: CreateAssignmentRequest
      responses:
        201:
          description: Created
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().create(identity.tenant_id, data, identity.user_id)
    return respond(schema.AssignmentResponse(), assignment, status=201)


@blueprint.post('/bulk')
@authenticated
@requires("Assignment.*.create")
@use_args(schema.BulkCreateRequest(), location='json')
def bulk_create_assignments(identity: Identity, data: dict):
    """ Bulk Create Assignments
    ---
    post:
      operationId: bulkCreateAssignments
      tags:
        - assignment
      summary: Bulk Create Assignments
      description: >
        Create up to 100 assignments in one call. Each item is created on
        its own: duplicates land in `skipped`, other rejections in `failed`
        with the item's index.
      requestBody:
        required: true
        content:
          application/json:
            schema: BulkCreateRequest
      responses:
        201:
          description: Created
          content:
            application/json:
              schema: BulkCreateResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    results = get_service().bulk_create(identity.tenant_id, data['assignments'], identity.user_id)
    return respond(schema.BulkCreateResponse(), results, status=201)


@blueprint.get('/pending-approvals')
@authenticated
@requires("Assignment.*.approve")
@use_args(schema.PendingApprovalsFilter(), location='querystring')
def list_pending_approvals(identity: Identity, params: dict):
    """ List Pending Approvals
    ---
    get:
      operationId: listPendingApprovals
      tags:
        - approval
      summary: List Pending Approvals
      description: Assignments awaiting approval, oldest first.
      parameters:
        - in: query
          name: approver_id
          required: false
          description: Only assignments whose current level belongs to this approver
          schema:
            type: integer
        - in: query
          name: limit
          required: false
          schema:
            type: integer
            default: 50
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: PendingApprovalsResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignments = get_service().pending_approvals(
        identity.tenant_id, approver_id=params.get('approver_id'), limit=params['limit'])
    return respond(schema.PendingApprovalsResponse(), assignments)


@blueprint.get('/utilization-report')
@authenticated
@requires("Report.*.view")
@use_args(schema.UtilizationQuery(), location='querystring')
def utilization_report(identity: Identity, params: dict):
    """ Utilization Report
    ---
    get:
      operationId: getUtilizationReport
      tags:
        - report
      summary: Utilization Report
      description: >
        Hours, allocation and ratings per consultant for active and
        completed assignments overlapping the window.
      parameters:
        - in: query
          name: start_date
          required: true
          schema:
            type: string
            format: date
        - in: query
          name: end_date
          required: true
          schema:
            type: string
            format: date
        - in: query
          name: consultant_id
          required: false
          schema:
            type: integer
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: UtilizationReportResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    rows = get_service().utilization_report(
        identity.tenant_id, params['start_date'], params['end_date'], params.get('consultant_id'))
    return respond(schema.UtilizationReportResponse(), rows)


@blueprint.get('/revenue-report')
@authenticated
@requires("Report.*.view")
@use_args(schema.ReportQuery(), location='querystring')
def revenue_report(identity: Identity, params: dict):
    """ Revenue Report
    ---
    get:
      operationId: getRevenueReport
      tags:
        - report
      summary: Revenue Report
      description: >
        Billable revenue, cost and margin per client and calendar month,
        most recent month first.
      parameters:
        - in: query
          name: start_date
          required: true
          schema:
            type: string
            format: date
        - in: query
          name: end_date
          required: true
          schema:
            type: string
            format: date
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: RevenueReportResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    rows = get_service().revenue_report(identity.tenant_id, params['start_date'], params['end_date'])
    return respond(schema.RevenueReportResponse(), rows)


@blueprint.get('/statistics')
@authenticated
@requires("Report.*.view")
def assignment_statistics(identity: Identity):
    """ Assignment Statistics
    ---
    get:
      operationId: getAssignmentStatistics
      tags:
        - report
      summary: Assignment Statistics
      description: Counts by status and role, top clients and hour totals.
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: StatisticsResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    return respond(schema.StatisticsResponse(), get_service().statistics(identity.tenant_id))


@blueprint.get('/consultant/<int:consultant_id>/allocation')
@authenticated
@requires("Assignment.*.view")
def consultant_allocation(identity: Identity, consultant_id: int):
    """ Consultant Allocation
    ---
    get:
      operationId: getConsultantAllocation
      tags:
        - assignment
      summary: Consultant Allocation
      description: Summed allocation over the consultant's confirmed and active assignments.
      parameters:
        - in: path
          name: consultant_id
          required: true
          schema:
            type: integer
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AllocationResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    allocation = get_service().current_allocation(identity.tenant_id, consultant_id)
    return respond(schema.AllocationResponse(), {
        'consultant_id': consultant_id,
        'allocation_percentage': allocation,
        'available_percentage': max(100 - allocation, 0),
        'over_allocated': allocation > 100,
    })


@blueprint.get('/<ident>')
@authenticated
@requires("Assignment.*.view")
def get_assignment(identity: Identity, ident: str):
    """ Get Assignment
    ---
    get:
      operationId: getAssignment
      tags:
        - assignment
      summary: Get Assignment
      description: Fetch an assignment by numeric id or by code.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    return respond(schema.AssignmentResponse(), get_service().get(identity.tenant_id, ident))


@blueprint.post('/<ident>')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.AssignmentPatch(), location='json')
def update_assignment(identity: Identity, data: dict, ident: str):
    """ Update Assignment
    ---
    post:
      operationId: updateAssignment
      tags:
        - assignment
      summary: Update Assignment
      description: >
        Apply a partial update. Which fields may change depends on the
        assignment's status; terminal assignments reject all updates.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: AssignmentPatch
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    expected_version = data.pop('version', None)
    assignment = get_service().update(
        identity.tenant_id, ident, data, identity.user_id, expected_version=expected_version)
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.delete('/<ident>')
@authenticated
@requires("Assignment.*.delete")
def delete_assignment(identity: Identity, ident: str):
    """ Delete Assignment
    ---
    delete:
      operationId: deleteAssignment
      tags:
        - assignment
      summary: Delete Assignment
      description: Soft delete; the assignment disappears from lookups and reports.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().delete(identity.tenant_id, ident, identity.user_id)
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/submit')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.StatusChangeRequest(), location='json')
def submit_assignment(identity: Identity, data: dict, ident: str):
    """ Submit Assignment for Approval
    ---
    post:
      operationId: submitAssignment
      tags:
        - approval
      summary: Submit Assignment for Approval
      description: >
        Move a proposed assignment to `pending_approval`, or straight to
        `confirmed` when it has no approval levels.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: StatusChangeRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().submit(
        identity.tenant_id, ident, identity.user_id, expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/activate')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.StatusChangeRequest(), location='json')
def activate_assignment(identity: Identity, data: dict, ident: str):
    """ Activate Assignment
    ---
    post:
      operationId: activateAssignment
      tags:
        - status
      summary: Activate Assignment
      description: Start work on the assignment; stamps the actual start date if unset.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: StatusChangeRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().activate(
        identity.tenant_id, ident, identity.user_id, expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/complete')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.CompleteRequest(), location='json')
def complete_assignment(identity: Identity, data: dict, ident: str):
    """ Complete Assignment
    ---
    post:
      operationId: completeAssignment
      tags:
        - status
      summary: Complete Assignment
      description: Finish the assignment, optionally recording client satisfaction.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: CompleteRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    satisfaction = data.get('client_satisfaction') or {}
    assignment = get_service().complete(
        identity.tenant_id, ident, identity.user_id,
        rating=satisfaction.get('rating'),
        feedback=satisfaction.get('feedback'),
        expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/hold')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.StatusChangeRequest(), location='json')
def hold_assignment(identity: Identity, data: dict, ident: str):
    """ Put Assignment on Hold
    ---
    post:
      operationId: holdAssignment
      tags:
        - status
      summary: Put Assignment on Hold
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: StatusChangeRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().hold(
        identity.tenant_id, ident, identity.user_id, data.get('reason'), expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/resume')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.StatusChangeRequest(), location='json')
def resume_assignment(identity: Identity, data: dict, ident: str):
    """ Resume Assignment
    ---
    post:
      operationId: resumeAssignment
      tags:
        - status
      summary: Resume Assignment
      description: Return an on-hold assignment to `active`.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: StatusChangeRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().resume(
        identity.tenant_id, ident, identity.user_id, data.get('reason'), expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/cancel')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.CancelRequest(), location='json')
def cancel_assignment(identity: Identity, data: dict, ident: str):
    """ Cancel Assignment
    ---
    post:
      operationId: cancelAssignment
      tags:
        - status
      summary: Cancel Assignment
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: CancelRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().cancel(
        identity.tenant_id, ident, identity.user_id, data['reason'], expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/terminate')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.StatusChangeRequest(), location='json')
def terminate_assignment(identity: Identity, data: dict, ident: str):
    """ Terminate Assignment
    ---
    post:
      operationId: terminateAssignment
      tags:
        - status
      summary: Terminate Assignment
      description: End an active or on-hold assignment early.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: StatusChangeRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().terminate(
        identity.tenant_id, ident, identity.user_id, data.get('reason'), expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/approve')
@authenticated
@requires("Assignment.*.approve")
@use_args(schema.ApproveRequest(), location='json')
def approve_assignment(identity: Identity, data: dict, ident: str):
    """ Approve Assignment Level
    ---
    post:
      operationId: approveAssignment
      tags:
        - approval
      summary: Approve Assignment Level
      description: >
        Approve the current approval level. Approving the last level
        confirms the assignment.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: ApproveRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().approve(
        identity.tenant_id, ident, identity.user_id, data['level'], data.get('comments'),
        expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/reject')
@authenticated
@requires("Assignment.*.approve")
@use_args(schema.RejectRequest(), location='json')
def reject_assignment(identity: Identity, data: dict, ident: str):
    """ Reject Assignment
    ---
    post:
      operationId: rejectAssignment
      tags:
        - approval
      summary: Reject Assignment
      description: >
        Reject at the current approval level, cancelling the assignment.
        `force` allows rejecting at a level other than the current one.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: RejectRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().reject(
        identity.tenant_id, ident, identity.user_id, data['level'], data['reason'], force=data['force'],
        expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/extend')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.ExtendRequest(), location='json')
def extend_assignment(identity: Identity, data: dict, ident: str):
    """ Extend Assignment
    ---
    post:
      operationId: extendAssignment
      tags:
        - extension
      summary: Extend Assignment
      description: >
        Record an extension request and move the proposed end date to
        the new end date.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: ExtendRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().extend(
        identity.tenant_id, ident, data['new_end_date'], data['reason'], identity.user_id,
        expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/extensions/<int:extension_id>/decision')
@authenticated
@requires("Assignment.*.approve")
@use_args(schema.ExtensionDecisionRequest(), location='json')
def decide_extension(identity: Identity, data: dict, ident: str, extension_id: int):
    """ Decide Extension
    ---
    post:
      operationId: decideExtension
      tags:
        - extension
      summary: Decide Extension
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
        - in: path
          name: extension_id
          required: true
          schema:
            type: integer
      requestBody:
        required: true
        content:
          application/json:
            schema: ExtensionDecisionRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().decide_extension(
        identity.tenant_id, ident, extension_id, identity.user_id,
        approved=data['decision'] == ExtensionDecision.APPROVE)
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/time-log')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.TimeLogRequest(), location='json')
def log_time(identity: Identity, data: dict, ident: str):
    """ Log Time
    ---
    post:
      operationId: logAssignmentTime
      tags:
        - time
      summary: Log Time
      description: >
        Add hours to an active assignment. Billable hours at a client rate
        are charged against the budget.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: TimeLogRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().log_time(
        identity.tenant_id, ident, data['hours'], identity.user_id,
        billable=data.get('billable'),
        entry_date=data.get('date'),
        expected_version=data.get('version'))
    return respond(schema.AssignmentResponse(), assignment)


@blueprint.post('/<ident>/notes')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.Note(), location='json')
def add_note(identity: Identity, data: dict, ident: str):
    """ Add Note
    ---
    post:
      operationId: addAssignmentNote
      tags:
        - assignment
      summary: Add Note
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: Note
      responses:
        201:
          description: Created
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().add_note(identity.tenant_id, ident, data, identity.user_id)
    return respond(schema.AssignmentResponse(), assignment, status=201)


@blueprint.post('/<ident>/documents')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.Document(), location='json')
def add_document(identity: Identity, data: dict, ident: str):
    """ Add Document
    ---
    post:
      operationId: addAssignmentDocument
      tags:
        - assignment
      summary: Add Document
      description: Attach a document reference; re-using a name adds a new version.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: Document
      responses:
        201:
          description: Created
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().add_document(identity.tenant_id, ident, data, identity.user_id)
    return respond(schema.AssignmentResponse(), assignment, status=201)


@blueprint.post('/<ident>/milestones')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.Milestone(), location='json')
def add_milestone(identity: Identity, data: dict, ident: str):
    """ Add Milestone
    ---
    post:
      operationId: addAssignmentMilestone
      tags:
        - assignment
      summary: Add Milestone
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
      requestBody:
        required: true
        content:
          application/json:
            schema: Milestone
      responses:
        201:
          description: Created
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().add_milestone(identity.tenant_id, ident, data, identity.user_id)
    return respond(schema.AssignmentResponse(), assignment, status=201)


@blueprint.post('/<ident>/milestones/<int:milestone_id>')
@authenticated
@requires("Assignment.*.edit")
@use_args(schema.MilestoneUpdateRequest(), location='json')
def update_milestone(identity: Identity, data: dict, ident: str, milestone_id: int):
    """ Update Milestone
    ---
    post:
      operationId: updateAssignmentMilestone
      tags:
        - assignment
      summary: Update Milestone
      description: Completing a milestone stamps its actual date when none is given.
      parameters:
        - in: path
          name: ident
          required: true
          schema:
            type: string
        - in: path
          name: milestone_id
          required: true
          schema:
            type: integer
      requestBody:
        required: true
        content:
          application/json:
            schema: MilestoneUpdateRequest
      responses:
        200:
          description: Success
          content:
            application/json:
              schema: AssignmentResponse
        default:
          description: Error
          content:
            application/json:
              schema: ErrorResponse
    """
    assignment = get_service().update_milestone(
        identity.tenant_id, ident, milestone_id, identity.user_id, data['status'], data.get('actual_date'))
    return respond(schema.AssignmentResponse(), assignment)

blueprint.cli.add_command(commands.utilization_report_cmd)
blueprint.cli.add_command(commands.revenue_report_cmd)
blueprint.cli.add_command(commands.seed_demo_cmd)
