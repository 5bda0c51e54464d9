from rest_framework.permissions import BasePermission

from pactify_api.exceptions import NotFoundError
from contracts.lifecycle import validate_contract_access
from contracts.models import Contract

MODERATORS_GROUP = 'Moderators'


def is_moderator(user):
    if not user.is_authenticated:
        return False
    return user.is_staff or user.groups.filter(name=MODERATORS_GROUP).exists()


class IsContractParticipantOrModerator(BasePermission):
    """
    Allows the contract's parties and moderators. Sets ``view.contract``.
    """
    def has_permission(self, request, view):
        contract_id = view.kwargs.get('contract_id')
        if not contract_id:
            return False
        if is_moderator(request.user):
            contract = Contract.objects.filter(pk=contract_id).first()
            if contract is None:
                raise NotFoundError("Contract not found", code='CONTRACT_NOT_FOUND')
            view.contract = contract
            return True
        view.contract = validate_contract_access(contract_id, request.user)
        return True
