from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .services.errores import (
    InventarioError,
    InventarioInsuficiente,
    ItemNoEncontrado,
    MovimientoNoReversible,
    NadaQueRevertir,
    ProduccionAbortada,
    StockInsuficiente,
    TransicionInvalida,
    ValidacionInventarioError,
)

ESTADOS_HTTP = {
    ValidacionInventarioError: status.HTTP_400_BAD_REQUEST,
    ItemNoEncontrado: status.HTTP_404_NOT_FOUND,
    NadaQueRevertir: status.HTTP_404_NOT_FOUND,
    StockInsuficiente: status.HTTP_409_CONFLICT,
    InventarioInsuficiente: status.HTTP_409_CONFLICT,
    TransicionInvalida: status.HTTP_409_CONFLICT,
    MovimientoNoReversible: status.HTTP_409_CONFLICT,
    ProduccionAbortada: status.HTTP_409_CONFLICT,
}


def manejador_excepciones(exc, context):
    """
    Traduce los errores de dominio del inventario a respuestas JSON; el
    resto lo maneja DRF.
    """
    if isinstance(exc, InventarioError):
        return Response(
            {"error": exc.codigo, "detalle": exc.mensaje, "datos": exc.datos},
            status=ESTADOS_HTTP.get(type(exc), status.HTTP_400_BAD_REQUEST),
        )
    return exception_handler(exc, context)
