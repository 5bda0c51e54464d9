"""
Workflow error taxonomy and the project-wide DRF exception handler.

Every error response is rendered as::

    {"success": false, "error": "<CODE>", "message": "...", "details": ...}
"""
import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class WorkflowError(exceptions.APIException):
    """Base class for contract/escrow workflow failures with a stable code."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'WORKFLOW_ERROR'
    default_detail = 'The request could not be completed.'

    def __init__(self, message=None, code=None, details=None):
        self.code = code or self.default_code
        self.message = message or self.default_detail
        self.details = details
        super().__init__(detail=self.message, code=self.code)


class AuthorizationError(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'CONTRACT_ACCESS_DENIED'
    default_detail = 'Access denied to contract.'


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'NOT_FOUND'
    default_detail = 'Not found.'


class StateConflictError(WorkflowError):
    default_code = 'INVALID_STATUS'
    default_detail = 'The contract is not in a state that allows this action.'


class VerificationDenied(WorkflowError):
    """KYC gate refusal. ``details`` carries the remediation payload verbatim."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'kyc_not_verified'
    default_detail = 'Freelancer account is not fully verified for payouts'


class PaymentFailure(WorkflowError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = 'PAYMENT_PROVIDER_ERROR'
    default_detail = 'The payment provider rejected the request.'


def _first_message(detail):
    if isinstance(detail, (list, tuple)) and detail:
        return _first_message(detail[0])
    if isinstance(detail, dict) and detail:
        return _first_message(next(iter(detail.values())))
    return str(detail)


def workflow_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, VerificationDenied):
        # Remediation fields sit at the top level so clients can render a checklist.
        body = {'success': False, 'ok': False, 'error': exc.code, 'message': exc.message}
        body.update(exc.details or {})
        response.data = body
        return response

    if isinstance(exc, WorkflowError):
        body = {'success': False, 'error': exc.code, 'message': exc.message}
        if exc.details is not None:
            body['details'] = exc.details
        response.data = body
        return response

    if isinstance(exc, exceptions.ValidationError):
        response.data = {
            'success': False,
            'error': 'VALIDATION_ERROR',
            'message': _first_message(exc.detail),
            'details': exc.detail,
        }
        return response

    codes = exc.get_codes() if isinstance(exc, exceptions.APIException) else None
    code = codes if isinstance(codes, str) else 'ERROR'
    if response.status_code == status.HTTP_401_UNAUTHORIZED:
        code = 'UNAUTHORIZED'
    response.data = {
        'success': False,
        'error': code.upper(),
        'message': _first_message(getattr(exc, 'detail', str(exc))),
    }
    return response
