from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    IngredienteViewSet,
    MaterialViewSet,
    MovimientoInventarioViewSet,
    OrdenProduccionViewSet,
    ProduccionViewSet,
    ProductoCatalogoViewSet,
    RecetaViewSet,
    ResiduoViewSet,
)

router = DefaultRouter()
router.register(r"ingredientes", IngredienteViewSet, basename="ingrediente")
router.register(r"materiales", MaterialViewSet, basename="material")
router.register(r"recetas", RecetaViewSet, basename="receta")
router.register(r"productos", ProductoCatalogoViewSet, basename="producto")
router.register(r"movimientos", MovimientoInventarioViewSet, basename="movimiento")
router.register(r"produccion", ProduccionViewSet, basename="produccion")
router.register(r"ordenes-produccion", OrdenProduccionViewSet, basename="orden-produccion")
router.register(r"residuos", ResiduoViewSet, basename="residuo")


urlpatterns = [
    path("", include(router.urls)),
]
