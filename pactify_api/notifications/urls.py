from django.urls import path

from . import views as my_views

urlpatterns = [
    path('', my_views.ListNotificationsAPIView.as_view(), name='notifications-list'),
    path('<int:id>/read/', my_views.MarkNotificationReadAPIView.as_view(), name='notifications-mark-read'),
]
