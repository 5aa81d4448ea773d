from django.http import JsonResponse


def error_404_view(request, exception):
    # API-only service: answer unknown routes in the same shape as payment errors
    return JsonResponse(
        {"ok": False, "error": {"kind": "not-found", "message": f"No route for {request.path}"}},
        status=404,
    )
