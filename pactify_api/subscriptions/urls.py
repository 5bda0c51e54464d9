from django.urls import path

from . import views as my_views

urlpatterns = [
    path('', my_views.SubscriptionAPIView.as_view(), name='subscription-detail'),
    path('checkout/', my_views.SubscriptionCheckoutAPIView.as_view(), name='subscription-checkout'),
    path('change/', my_views.PlanChangeAPIView.as_view(), name='subscription-change'),
    path('cancel/', my_views.CancelSubscriptionAPIView.as_view(), name='subscription-cancel'),
]
