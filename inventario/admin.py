from django.contrib import admin, messages

from .models import (
    EventoProduccion,
    HistorialFase,
    Ingrediente,
    InventarioProducto,
    Material,
    MovimientoInventario,
    OrdenProduccion,
    ProductoCatalogo,
    Receta,
    RecetaIngrediente,
    Residuo,
)
from .services.errores import InventarioError
from .services.reversion import revertir_evento, revertir_movimiento
from .utils_roles import contexto_actor, usuario_es_admin


admin.site.site_header = "Administración de Inventario de Producción"
admin.site.site_title = "Inventario de Producción"


def revertir_seleccionados(modeladmin, request, queryset):
    """
    Acción admin: revierte entradas manuales o, si el movimiento pertenece a
    una operación correlacionada, la operación completa.
    """
    if not usuario_es_admin(request.user):
        messages.error(request, "No tiene permiso para revertir movimientos.")
        return

    operador = contexto_actor(request.user).actor_id
    revertidas = set()
    exitosos = 0
    fallidos = 0

    for movimiento in queryset.order_by("id"):
        try:
            if movimiento.correlacion_id:
                if movimiento.correlacion_id in revertidas:
                    continue
                revertir_evento(correlacion_id=movimiento.correlacion_id, operador=operador)
                revertidas.add(movimiento.correlacion_id)
            else:
                revertir_movimiento(movimiento_id=movimiento.pk, operador=operador)
            exitosos += 1
        except InventarioError as exc:
            fallidos += 1
            messages.warning(request, f"Movimiento {movimiento.pk}: {exc.mensaje}")

    if exitosos:
        messages.success(request, f"{exitosos} reversiones aplicadas.")
    if fallidos:
        messages.warning(request, f"{fallidos} movimientos no se pudieron revertir.")


revertir_seleccionados.short_description = "Revertir movimientos seleccionados"


@admin.register(ProductoCatalogo)
class ProductoCatalogoAdmin(admin.ModelAdmin):
    list_display = ("codigo", "nombre", "unidad_medida", "activo")
    list_filter = ("activo",)
    search_fields = ("codigo", "nombre")


@admin.register(InventarioProducto)
class InventarioProductoAdmin(admin.ModelAdmin):
    list_display = ("producto", "stock", "updated_at")
    search_fields = ("producto__nombre", "producto__codigo")
    # El stock solo cambia mediante movimientos
    readonly_fields = ("stock", "created_at", "updated_at")


class ItemInventarioAdmin(admin.ModelAdmin):
    list_display = ("nombre", "unidad_medida", "total_adquirido", "consumido", "disponible", "activo")
    list_filter = ("activo", "unidad_medida")
    search_fields = ("nombre",)
    readonly_fields = ("total_adquirido", "consumido", "created_at", "updated_at")

    def disponible(self, obj):
        return obj.disponible


@admin.register(Ingrediente)
class IngredienteAdmin(ItemInventarioAdmin):
    pass


@admin.register(Material)
class MaterialAdmin(ItemInventarioAdmin):
    list_display = ItemInventarioAdmin.list_display + ("stock_minimo", "bajo_stock")

    @admin.display(boolean=True)
    def bajo_stock(self, obj):
        return obj.bajo_stock


class RecetaIngredienteInline(admin.TabularInline):
    model = RecetaIngrediente
    extra = 1
    autocomplete_fields = ("ingrediente",)


class HistorialFaseInline(admin.TabularInline):
    model = HistorialFase
    extra = 0
    can_delete = False
    readonly_fields = (
        "fase",
        "fecha_inicio",
        "fecha_fin",
        "notas",
        "reinicio",
        "correlacion_id",
        "ingredientes_agregados",
    )

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Receta)
class RecetaAdmin(admin.ModelAdmin):
    list_display = ("nombre", "estado_proceso", "fase_actual", "producido", "utilizado", "activo")
    list_filter = ("activo", "estado_proceso", "fase_actual")
    search_fields = ("nombre", "descripcion")
    inlines = [RecetaIngredienteInline, HistorialFaseInline]
    readonly_fields = ("estado_proceso", "fase_actual", "producido", "utilizado", "created_at", "updated_at")


@admin.register(MovimientoInventario)
class MovimientoInventarioAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "fecha",
        "tipo",
        "subtipo",
        "tipo_item",
        "item_nombre",
        "cantidad",
        "operador",
        "correlacion_id",
        "revertido",
    )
    list_filter = ("tipo", "subtipo", "tipo_item", "revertido", "fecha")
    search_fields = ("item_nombre", "motivo", "operador", "correlacion_id")
    date_hierarchy = "fecha"
    actions = [revertir_seleccionados]

    fieldsets = (
        (None, {
            "fields": (
                "tipo",
                "subtipo",
                "tipo_item",
                "item_id",
                "item_nombre",
                "cantidad",
                "contador",
                "fecha",
                "operador",
            )
        }),
        ("Saldos", {
            "fields": (
                "cantidad_anterior",
                "cantidad_nueva",
                "disponible_anterior",
                "disponible_nuevo",
            )
        }),
        ("Correlación y reversión", {
            "classes": ("collapse",),
            "fields": (
                "motivo",
                "correlacion_id",
                "revierte",
                "revertido",
                "revertido_en",
                "detalles",
            )
        }),
    )

    # El libro de movimientos solo se escribe desde los servicios
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(EventoProduccion)
class EventoProduccionAdmin(admin.ModelAdmin):
    list_display = ("correlacion_id", "tipo", "estado", "tipo_salida", "salida_id", "operador", "created_at")
    list_filter = ("tipo", "estado")
    search_fields = ("correlacion_id", "operador")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Residuo)
class ResiduoAdmin(admin.ModelAdmin):
    list_display = ("fecha", "tipo_item", "item_nombre", "cantidad", "unidad_medida", "motivo", "operador", "activo")
    list_filter = ("motivo", "tipo_item", "activo")
    search_fields = ("item_nombre", "observaciones", "operador")
    readonly_fields = ("correlacion_id", "created_at", "updated_at")


@admin.register(OrdenProduccion)
class OrdenProduccionAdmin(admin.ModelAdmin):
    list_display = ("nombre", "tipo_salida", "salida_id", "cantidad", "estado", "operador", "fecha_ejecucion")
    list_filter = ("estado", "tipo_salida")
    search_fields = ("nombre", "observaciones", "correlacion_id")
    # El estado cambia con ejecutar / cancelar / eliminar
    readonly_fields = ("estado", "ejecutada_por", "fecha_ejecucion", "correlacion_id", "created_at", "updated_at")
