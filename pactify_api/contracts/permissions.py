from rest_framework.permissions import BasePermission

from .lifecycle import validate_contract_access


class IsContractParticipant(BasePermission):
    """
    Allows access only to the creator, client or freelancer of the contract in the URL.
    Expects the view to have 'contract_id' in kwargs; the loaded contract is kept on
    ``view.contract`` so the view does not fetch it twice.
    """

    def has_permission(self, request, view):
        contract_id = view.kwargs.get('contract_id')
        if not contract_id:
            return False
        view.contract = validate_contract_access(contract_id, request.user)
        return True
