from django.urls import path

from . import views

urlpatterns = [
    path(
        '',
        views.ListCreateDisputesAPIView.as_view(),
        name='contract-disputes',
    ),
    path(
        '<int:dispute_id>/resolve/',
        views.ResolveDisputeAPIView.as_view(),
        name='dispute-resolve',
    ),
    path(
        '<int:dispute_id>/messages/',
        views.ListCreateDisputeMessagesAPIView.as_view(),
        name='dispute-messages',
    ),
]
