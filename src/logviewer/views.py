import json
from datetime import datetime, timezone as dt_timezone
from typing import Iterator, Optional

from django.conf import settings
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import permissions, status, serializers
from drf_spectacular.utils import OpenApiParameter, extend_schema

from astroluna.pagination import limit_offset, max_page_size

# query param `source` -> setting holding the JSON-lines file path
LOG_SOURCES = {
    'django': 'LOG_JSON_PATH',
    'security': 'SECURITY_LOG_JSON_PATH',
}


def _parse_time(value: str) -> Optional[datetime]:
    """Parse ISO timestamps (trailing Z allowed) or the logging module's asctime; naive values are UTC."""
    if not value:
        return None
    parsed = None
    try:
        parsed = datetime.fromisoformat(value[:-1] + '+00:00' if value.endswith('Z') else value)
    except (ValueError, TypeError):
        for fmt in ("%Y-%m-%d %H:%M:%S,%f", "%Y-%m-%d %H:%M:%S"):
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def _read_entries(path: str) -> Iterator[dict]:
    with open(path, 'r', encoding='utf-8') as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, dict):
                yield obj


def _to_entry(obj: dict) -> dict:
    return {
        'timestamp': obj.get('asctime') or obj.get('timestamp'),
        'level': obj.get('levelname') or obj.get('level') or '',
        'logger': obj.get('name'),
        'module': obj.get('module'),
        'process': obj.get('process'),
        'thread': obj.get('thread'),
        'message': obj.get('message') or obj.get('msg') or '',
        'raw': obj,
    }


def _matches(entry: dict, level, query, start, end) -> bool:
    if level and entry['level'] and entry['level'].upper() != level.upper():
        return False
    if query and query.lower() not in entry['message'].lower():
        return False
    if start or end:
        ts = _parse_time(entry['timestamp'])
        if ts is not None:
            if start and ts < start:
                return False
            if end and ts > end:
                return False
    return True


class LogEntrySerializer(serializers.Serializer):
    timestamp = serializers.CharField(allow_null=True)
    level = serializers.CharField(allow_null=True)
    logger = serializers.CharField(allow_null=True)
    module = serializers.CharField(allow_null=True)
    process = serializers.CharField(allow_null=True)
    thread = serializers.CharField(allow_null=True)
    message = serializers.CharField(allow_null=True)
    raw = serializers.DictField()


class LogListSerializer(serializers.Serializer):
    source = serializers.CharField()
    count = serializers.IntegerField()
    offset = serializers.IntegerField()
    limit = serializers.IntegerField()
    results = LogEntrySerializer(many=True)


@extend_schema(
    tags=['Logs'],
    parameters=[
        OpenApiParameter('source', str, enum=list(LOG_SOURCES)),
        OpenApiParameter('level', str),
        OpenApiParameter('query', str),
        OpenApiParameter('start', str, description='ISO timestamp'),
        OpenApiParameter('end', str, description='ISO timestamp'),
        OpenApiParameter('limit', int),
        OpenApiParameter('offset', int),
    ],
    responses=LogListSerializer,
)
class LogsAPIView(APIView):
    """Query the application or security JSON-lines log.

    `limit` defaults to and is capped at ``REST_FRAMEWORK['PAGE_SIZE']``.
    """
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        source = request.query_params.get('source', 'django')
        setting = LOG_SOURCES.get(source)
        if setting is None:
            return Response(
                {"error": f"Unknown log source: {source}", "sources": list(LOG_SOURCES)},
                status=status.HTTP_400_BAD_REQUEST,
            )
        path = getattr(settings, setting, None)
        if not path:
            return Response({"error": f"{setting} not configured"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        limit, offset = limit_offset(request, default_limit=max_page_size())
        level = request.query_params.get('level')
        query = request.query_params.get('query')
        start = _parse_time(request.query_params.get('start', ''))
        end = _parse_time(request.query_params.get('end', ''))

        results = []
        matched = 0
        try:
            for obj in _read_entries(path):
                entry = _to_entry(obj)
                if not _matches(entry, level, query, start, end):
                    continue
                matched += 1
                if matched > offset and len(results) < limit:
                    results.append(entry)
        except FileNotFoundError:
            return Response({"error": f"Log file not found: {path}"}, status=status.HTTP_404_NOT_FOUND)

        return Response({
            'source': source,
            'count': matched,
            'offset': offset,
            'limit': limit,
            'results': results,
        })
