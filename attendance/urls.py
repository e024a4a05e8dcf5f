"""
URL routing for the attendance API.
"""

from django.urls import path
from .views import (
    OccasionListCreateView,
    OccasionDetailView,
    OccasionOccurrencesView,
    OccasionDateMatchView,
    SessionListCreateView,
    SessionBulkCreateView,
    SessionDraftsView,
    SessionDetailView,
)

urlpatterns = [
    path('occasions/', OccasionListCreateView.as_view(), name='occasion-list-create'),
    path('occasions/<int:pk>/', OccasionDetailView.as_view(), name='occasion-detail'),
    path('occasions/<int:pk>/occurrences/', OccasionOccurrencesView.as_view(), name='occasion-occurrences'),
    path('occasions/<int:pk>/matches/', OccasionDateMatchView.as_view(), name='occasion-matches'),
    path('sessions/', SessionListCreateView.as_view(), name='session-list-create'),
    path('sessions/bulk/', SessionBulkCreateView.as_view(), name='session-bulk-create'),
    path('sessions/drafts/', SessionDraftsView.as_view(), name='session-drafts'),
    path('sessions/<int:pk>/', SessionDetailView.as_view(), name='session-detail'),
]
