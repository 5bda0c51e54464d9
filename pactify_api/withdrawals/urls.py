from django.urls import path
from . import views as my_views

urlpatterns = [
    path('', my_views.ListWithdrawalsAPIView.as_view(), name='withdrawal-list'),
    path('request/', my_views.RequestWithdrawalAPIView.as_view(), name='withdrawal-request'),
    path('eligibility/', my_views.WithdrawalEligibilityAPIView.as_view(), name='withdrawal-eligibility'),
]
