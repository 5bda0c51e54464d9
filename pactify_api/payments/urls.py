from django.urls import path
from . import views

urlpatterns = [
    path('connect/account/', views.ConnectedAccountView.as_view(), name='connected-account'),
    path('connect/onboarding-link/', views.OnboardingLinkView.as_view(), name='connect-onboarding-link'),
    path('webhooks/stripe/', views.StripeWebhookView.as_view(), name='stripe-webhook'),
]
