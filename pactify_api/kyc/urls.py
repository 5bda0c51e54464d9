from django.urls import path
from . import views as my_views

urlpatterns = [
    path('check-requirements/', my_views.CheckRequirementsAPIView.as_view(), name='kyc-check-requirements'),
    path('status/', my_views.VerificationStatusAPIView.as_view(), name='kyc-status'),
    path('verify/', my_views.ConfirmVerificationAPIView.as_view(), name='kyc-verify'),
]
