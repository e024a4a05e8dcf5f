"""Views for the attendance session scheduler."""

import logging

from django.shortcuts import get_object_or_404
from django.utils import timezone

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import AttendanceSession, Occasion
from .serializers import (
    AttendanceSessionReadSerializer,
    AttendanceSessionUpdateSerializer,
    DateMatchQuerySerializer,
    DateRangeQuerySerializer,
    DraftRequestSerializer,
    DraftSessionSerializer,
    OccasionReadSerializer,
    OccasionWriteSerializer,
    OccurrenceQuerySerializer,
    SessionPayloadSerializer,
)
from . import services
from .types import Location, OccasionUpdateData, SessionSettings, SessionUpdateData
from .wizard import SessionCreationWizard

logger = logging.getLogger(__name__)


def conflict_response(error: services.SessionConflictError) -> Response:
    """409 response carrying the raw message and its parsed items."""
    return Response({
        'detail': str(error),
        'conflict': error.info.to_dict(),
    }, status=status.HTTP_409_CONFLICT)


def bad_request(error: ValueError) -> Response:
    return Response({'detail': str(error)}, status=status.HTTP_400_BAD_REQUEST)


class OccasionListCreateView(APIView):
    """
    List all occasions or create a new one.

    GET /api/occasions/ - List occasions (?active=true for active only)
    POST /api/occasions/ - Create an occasion
    """

    def get(self, request):
        """List occasions."""
        occasions = Occasion.objects.all()
        if request.query_params.get('active', '').lower() == 'true':
            occasions = occasions.active()
        serializer = OccasionReadSerializer(occasions, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create an occasion."""
        serializer = OccasionWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        try:
            occasion = services.create_occasion(
                name=data['name'],
                recurrence_rule=data.get('recurrence_rule', ''),
                recurrence_start=data.get('recurrence_start'),
                description=data.get('description', ''),
                default_duration_minutes=data.get('default_duration_minutes'),
            )
        except ValueError as exc:
            return bad_request(exc)

        response_serializer = OccasionReadSerializer(occasion)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class OccasionDetailView(APIView):
    """
    Retrieve, update, or delete an occasion.

    GET /api/occasions/{id}/ - Retrieve occasion
    PATCH /api/occasions/{id}/ - Update occasion
    DELETE /api/occasions/{id}/ - Delete (or deactivate) occasion
    """

    def get(self, request, pk):
        """Retrieve an occasion."""
        occasion = get_object_or_404(Occasion, pk=pk)
        serializer = OccasionReadSerializer(occasion)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Update an occasion."""
        occasion = get_object_or_404(Occasion, pk=pk)
        serializer = OccasionWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        update_data = OccasionUpdateData(
            name=serializer.validated_data.get('name'),
            description=serializer.validated_data.get('description'),
            recurrence_rule=serializer.validated_data.get('recurrence_rule'),
            recurrence_start=serializer.validated_data.get('recurrence_start'),
            default_duration_minutes=serializer.validated_data.get('default_duration_minutes'),
            is_active=serializer.validated_data.get('is_active'),
        )
        try:
            updated_occasion = services.update_occasion(occasion, update_data)
        except ValueError as exc:
            return bad_request(exc)

        response_serializer = OccasionReadSerializer(updated_occasion)
        return Response(response_serializer.data)

    def delete(self, request, pk):
        """Delete an occasion, or deactivate it when it has sessions."""
        occasion = get_object_or_404(Occasion, pk=pk)

        name = occasion.name
        deleted = services.delete_occasion(occasion)

        if deleted:
            message = f'Occasion "{name}" has been deleted.'
        else:
            message = f'Occasion "{name}" has sessions and has been deactivated.'
        return Response({'message': message, 'deleted': deleted}, status=status.HTTP_200_OK)


class OccasionOccurrencesView(APIView):
    """
    Preview the dates a bulk option selects for a recurring occasion.

    GET /api/occasions/{id}/occurrences/?option=next_3_sessions
    GET /api/occasions/{id}/occurrences/?option=custom_range&start=X&end=Y
    """

    def get(self, request, pk):
        occasion = get_object_or_404(Occasion, pk=pk)
        query_serializer = OccurrenceQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        try:
            dates = services.preview_occurrences(
                occasion,
                data['option'],
                timezone.localdate(),
                custom_start=data.get('start'),
                custom_end=data.get('end'),
            )
        except ValueError as exc:
            return bad_request(exc)

        return Response({
            'occasion': occasion.pk,
            'option': data['option'],
            'dates': [day.isoformat() for day in dates],
        })


class OccasionDateMatchView(APIView):
    """
    Check a date against an occasion's recurrence rule.

    GET /api/occasions/{id}/matches/?date=YYYY-MM-DD
    """

    def get(self, request, pk):
        occasion = get_object_or_404(Occasion, pk=pk)
        query_serializer = DateMatchQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        day = query_serializer.validated_data['date']
        return Response({
            'date': day.isoformat(),
            'matches': services.occasion_matches_date(occasion, day),
        })


class SessionListCreateView(APIView):
    """
    List sessions within a date range or create a single session.

    GET /api/sessions/?start=X&end=Y - List sessions in range
    POST /api/sessions/ - Create a session
    """

    def get(self, request):
        """List sessions within a date range."""
        query_serializer = DateRangeQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        occasion = None
        if data.get('occasion'):
            occasion = get_object_or_404(Occasion, pk=data['occasion'])

        sessions = services.get_sessions_in_range(data['start'], data['end'], occasion)

        serializer = AttendanceSessionReadSerializer(sessions, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create a single session."""
        serializer = SessionPayloadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            session = services.create_session(serializer.validated_data)
        except services.SessionConflictError as exc:
            return conflict_response(exc)
        except ValueError as exc:
            return bad_request(exc)

        response_serializer = AttendanceSessionReadSerializer(session)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class SessionBulkCreateView(APIView):
    """
    Create several sessions at once.

    POST /api/sessions/bulk/ - body is a list of session payloads
    """

    def post(self, request):
        serializer = SessionPayloadSerializer(data=request.data, many=True)
        serializer.is_valid(raise_exception=True)

        try:
            sessions = services.bulk_create_sessions(serializer.validated_data)
        except services.SessionConflictError as exc:
            return conflict_response(exc)
        except ValueError as exc:
            return bad_request(exc)

        response_serializer = AttendanceSessionReadSerializer(sessions, many=True)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class SessionDetailView(APIView):
    """
    Retrieve, update, or delete a session.

    GET /api/sessions/{id}/ - Retrieve session
    PATCH /api/sessions/{id}/ - Update session
    DELETE /api/sessions/{id}/ - Soft-delete session
    """

    def get(self, request, pk):
        """Retrieve a session."""
        session = get_object_or_404(AttendanceSession.objects.live(), pk=pk)
        serializer = AttendanceSessionReadSerializer(session)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Update a session."""
        session = get_object_or_404(AttendanceSession.objects.live(), pk=pk)
        serializer = AttendanceSessionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        update_data = SessionUpdateData(
            name=serializer.validated_data.get('name'),
            start_time=serializer.validated_data.get('start_time'),
            end_time=serializer.validated_data.get('end_time'),
            is_open=serializer.validated_data.get('is_open'),
            allow_public_marking=serializer.validated_data.get('allow_public_marking'),
        )
        try:
            updated_session = services.update_session(session, update_data)
        except services.SessionConflictError as exc:
            return conflict_response(exc)
        except ValueError as exc:
            return bad_request(exc)

        response_serializer = AttendanceSessionReadSerializer(updated_session)
        return Response(response_serializer.data)

    def delete(self, request, pk):
        """Soft-delete a session."""
        session = get_object_or_404(AttendanceSession.objects.live(), pk=pk)

        services.delete_session(session)

        return Response({
            'message': f'Session "{session.name}" on {session.start_time.date()} has been deleted.'
        }, status=status.HTTP_200_OK)


class SessionDraftsView(APIView):
    """
    Run the session creation wizard.

    POST /api/sessions/drafts/ - Generate drafts for an occasion. With
    "commit": true the drafts are also created; a scheduling conflict returns
    409 together with the drafts so they can be adjusted and resubmitted.
    """

    def post(self, request):
        serializer = DraftRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        occasion = None
        if data.get('occasion'):
            occasion = get_object_or_404(Occasion, pk=data['occasion'])
            try:
                occasion_info = occasion.to_info()
            except ValueError as exc:
                return bad_request(exc)
        else:
            occasion_info = None

        wizard = SessionCreationWizard(
            occasion=occasion_info,
            mode=data['mode'],
            start_clock=data['start_time'],
            end_clock=data['end_time'],
            base_name=data.get('base_name', ''),
            settings=_settings_from_request(data),
        )
        wizard.single_date = data.get('date')
        wizard.bulk_option = data['bulk_option']
        wizard.custom_start = data.get('custom_start')
        wizard.custom_end = data.get('custom_end')
        wizard.manual_dates = data.get('manual_dates', [])

        if not wizard.generate(timezone.localdate()):
            return Response({
                'validation_errors': wizard.validation_errors,
            }, status=status.HTTP_400_BAD_REQUEST)

        drafts = list(wizard.drafts)
        if not data.get('commit'):
            return Response({
                'drafts': DraftSessionSerializer(drafts, many=True).data,
                'dates_read_only': wizard.drafts.dates_read_only,
            })

        try:
            persisted = wizard.submit(services.create_session, services.bulk_create_sessions)
        except ValueError as exc:
            return bad_request(exc)

        if persisted is None:
            if wizard.conflict.is_reported:
                info = wizard.conflict.info
                return Response({
                    'detail': info.title,
                    'conflict': info.to_dict(),
                    'drafts': DraftSessionSerializer(drafts, many=True).data,
                }, status=status.HTTP_409_CONFLICT)
            return Response({
                'validation_errors': wizard.validation_errors,
                'drafts': DraftSessionSerializer(drafts, many=True).data,
            }, status=status.HTTP_400_BAD_REQUEST)

        logger.info("Wizard created %d session(s) for occasion %s", len(persisted), occasion.pk)
        return Response({'created': persisted}, status=status.HTTP_201_CREATED)


def _settings_from_request(data) -> SessionSettings:
    location = data.get('location')
    settings = SessionSettings(
        is_open=data.get('is_open', True),
        allow_public_marking=data.get('allow_public_marking', False),
        proximity_required=data.get('proximity_required', False),
        location=Location(**location) if location else None,
        allowed_tags=list(data.get('allowed_tags', [])),
        allowed_groups=list(data.get('allowed_groups', [])),
        allowed_members=list(data.get('allowed_members', [])),
    )
    if data.get('marking_modes'):
        settings.marking_modes.update(data['marking_modes'])
    return settings
