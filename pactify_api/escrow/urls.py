from django.urls import path

from . import views

urlpatterns = [
    path("", views.EscrowLedgerView.as_view(), name="escrow-ledger"),
    path("fund/", views.FundEscrowView.as_view(), name="escrow-fund"),
    path("confirm/", views.ConfirmFundingView.as_view(), name="escrow-confirm"),
    path("release/", views.ReleaseEscrowView.as_view(), name="escrow-release"),
]
