from django.urls import path

from . import views as my_views

urlpatterns = [
    path('', my_views.ListCreateContractsAPIView.as_view(), name='contracts-list-create'),
    path('<uuid:contract_id>/', my_views.RetrieveContractAPIView.as_view(), name='contracts-detail'),
    path('<uuid:contract_id>/sign/', my_views.SignContractAPIView.as_view(), name='contracts-sign'),
    path('<uuid:contract_id>/transition/', my_views.ContractTransitionAPIView.as_view(), name='contracts-transition'),
    path('<uuid:contract_id>/deliverables/', my_views.ListCreateDeliverablesAPIView.as_view(), name='contracts-deliverables'),

    # Milestone actions
    path('<uuid:contract_id>/milestones/<int:milestone_id>/start/',
         my_views.StartMilestoneAPIView.as_view(), name='milestones-start'),
    path('<uuid:contract_id>/milestones/<int:milestone_id>/approve/',
         my_views.ApproveMilestoneAPIView.as_view(), name='milestones-approve'),
    path('<uuid:contract_id>/milestones/<int:milestone_id>/request-revision/',
         my_views.RequestMilestoneRevisionAPIView.as_view(), name='milestones-request-revision'),
]
