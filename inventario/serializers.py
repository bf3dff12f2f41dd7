from rest_framework import serializers

from .models import (
    EventoProduccion,
    HistorialFase,
    Ingrediente,
    Material,
    MovimientoInventario,
    OrdenProduccion,
    ProductoCatalogo,
    Receta,
    RecetaIngrediente,
    Residuo,
    TipoItem,
)


class ProductoCatalogoSerializer(serializers.ModelSerializer):
    stock = serializers.SerializerMethodField()

    class Meta:
        model = ProductoCatalogo
        fields = [
            "id",
            "codigo",
            "nombre",
            "unidad_medida",
            "activo",
            "stock",
        ]
        read_only_fields = fields

    def get_stock(self, obj):
        inventario = getattr(obj, "inventario", None)
        return str(inventario.stock) if inventario is not None else "0"


class ItemInventarioSerializer(serializers.ModelSerializer):
    """
    Las cantidades solo cambian a través de movimientos; aquí son de solo
    lectura. `cantidad_inicial` se usa únicamente al crear.
    """
    disponible = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)
    cantidad_inicial = serializers.DecimalField(
        max_digits=14,
        decimal_places=3,
        write_only=True,
        required=False,
        min_value=0,
    )

    class Meta:
        model = Ingrediente
        fields = [
            "id",
            "nombre",
            "unidad_medida",
            "producto_referencia",
            "total_adquirido",
            "consumido",
            "disponible",
            "cantidad_inicial",
            "activo",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "total_adquirido",
            "consumido",
            "activo",
            "created_at",
            "updated_at",
        ]

    def validate_nombre(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("El nombre es obligatorio.")
        return value

    def update(self, instance, validated_data):
        validated_data.pop("cantidad_inicial", None)
        return super().update(instance, validated_data)


class IngredienteSerializer(ItemInventarioSerializer):
    class Meta(ItemInventarioSerializer.Meta):
        model = Ingrediente


class MaterialSerializer(ItemInventarioSerializer):
    bajo_stock = serializers.BooleanField(read_only=True)

    class Meta(ItemInventarioSerializer.Meta):
        model = Material
        fields = ItemInventarioSerializer.Meta.fields + ["stock_minimo", "bajo_stock"]

    def validate_stock_minimo(self, value):
        if value < 0:
            raise serializers.ValidationError("El stock mínimo no puede ser negativo.")
        return value


class RecetaIngredienteSerializer(serializers.ModelSerializer):
    ingrediente_nombre = serializers.CharField(source="ingrediente.nombre", read_only=True)

    class Meta:
        model = RecetaIngrediente
        fields = [
            "id",
            "ingrediente",
            "ingrediente_nombre",
            "cantidad",
            "unidad_medida",
            "orden",
            "adicional",
        ]
        read_only_fields = fields


class LineaIngredienteSerializer(serializers.Serializer):
    ingrediente_id = serializers.IntegerField()
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    unidad_medida = serializers.CharField(required=False, allow_blank=True)

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


class HistorialFaseSerializer(serializers.ModelSerializer):
    class Meta:
        model = HistorialFase
        fields = [
            "id",
            "fase",
            "fecha_inicio",
            "fecha_fin",
            "notas",
            "reinicio",
            "correlacion_id",
            "ingredientes_agregados",
        ]
        read_only_fields = fields


class RecetaSerializer(serializers.ModelSerializer):
    ingredientes = RecetaIngredienteSerializer(many=True, read_only=True)
    historial_fases = HistorialFaseSerializer(many=True, read_only=True)
    disponible = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)
    lineas = LineaIngredienteSerializer(many=True, write_only=True)

    class Meta:
        model = Receta
        fields = [
            "id",
            "nombre",
            "descripcion",
            "rendimiento_cantidad",
            "rendimiento_unidad",
            "estado_proceso",
            "fase_actual",
            "producido",
            "utilizado",
            "disponible",
            "activo",
            "ingredientes",
            "lineas",
            "historial_fases",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "estado_proceso",
            "fase_actual",
            "producido",
            "utilizado",
            "activo",
            "created_at",
            "updated_at",
        ]

    def validate_rendimiento_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("El rendimiento debe ser > 0.")
        return value

    def validate_lineas(self, value):
        if not value:
            raise serializers.ValidationError("La receta debe tener al menos un ingrediente.")
        return value


class MovimientoInventarioSerializer(serializers.ModelSerializer):
    compensado_por = serializers.SerializerMethodField()

    class Meta:
        model = MovimientoInventario
        fields = [
            "id",
            "tipo",
            "subtipo",
            "tipo_item",
            "item_id",
            "item_nombre",
            "cantidad",
            "contador",
            "cantidad_anterior",
            "cantidad_nueva",
            "disponible_anterior",
            "disponible_nuevo",
            "motivo",
            "operador",
            "fecha",
            "detalles",
            "correlacion_id",
            "revierte",
            "revertido",
            "revertido_en",
            "compensado_por",
        ]
        read_only_fields = fields

    def get_compensado_por(self, obj):
        return [m.pk for m in obj.compensaciones.all()]


class EventoProduccionSerializer(serializers.ModelSerializer):
    class Meta:
        model = EventoProduccion
        fields = [
            "id",
            "correlacion_id",
            "tipo",
            "estado",
            "tipo_salida",
            "salida_id",
            "cantidad_salida",
            "receta",
            "operador",
            "detalles",
            "created_at",
            "finalizado_en",
        ]
        read_only_fields = fields


class OrdenProduccionSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrdenProduccion
        fields = [
            "id",
            "nombre",
            "tipo_salida",
            "salida_id",
            "cantidad",
            "insumos",
            "observaciones",
            "estado",
            "operador",
            "ejecutada_por",
            "fecha_ejecucion",
            "correlacion_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ResiduoSerializer(serializers.ModelSerializer):
    class Meta:
        model = Residuo
        fields = [
            "id",
            "tipo_item",
            "item_id",
            "item_nombre",
            "cantidad",
            "unidad_medida",
            "motivo",
            "observaciones",
            "operador",
            "fecha",
            "correlacion_id",
            "activo",
        ]
        read_only_fields = [
            "id",
            "item_nombre",
            "unidad_medida",
            "operador",
            "fecha",
            "correlacion_id",
            "activo",
        ]

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


# --- Solicitudes de operaciones ---


class CantidadSerializer(serializers.Serializer):
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    motivo = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


class AjusteSerializer(serializers.Serializer):
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    motivo = serializers.CharField()

    def validate_cantidad(self, value):
        if value == 0:
            raise serializers.ValidationError("La cantidad del ajuste no puede ser 0.")
        return value


class InsumoProduccionSerializer(serializers.Serializer):
    tipo_item = serializers.ChoiceField(choices=TipoItem.choices)
    item_id = serializers.IntegerField()
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


class SolicitudProduccionSerializer(serializers.Serializer):
    tipo_salida = serializers.ChoiceField(choices=TipoItem.choices)
    salida_id = serializers.IntegerField()
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    insumos = InsumoProduccionSerializer(many=True, required=False, default=list)
    motivo = serializers.CharField(required=False, allow_blank=True, default="")
    correlacion_id = serializers.CharField(required=False, allow_blank=True, max_length=64)

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


class ProducirRecetaSerializer(serializers.Serializer):
    lotes = serializers.DecimalField(max_digits=14, decimal_places=3)
    motivo = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_lotes(self, value):
        if value <= 0:
            raise serializers.ValidationError("Los lotes deben ser > 0.")
        return value


class AvanzarFaseSerializer(serializers.Serializer):
    notas = serializers.CharField(required=False, allow_blank=True, default="")
    ingredientes_adicionales = LineaIngredienteSerializer(many=True, required=False, default=list)


class NotasSerializer(serializers.Serializer):
    notas = serializers.CharField(required=False, allow_blank=True, default="")


class FiltroMovimientosSerializer(serializers.Serializer):
    tipo_item = serializers.ChoiceField(choices=TipoItem.choices, required=False)
    item_id = serializers.IntegerField(required=False)
    tipo = serializers.ChoiceField(choices=MovimientoInventario.TIPO_CHOICES, required=False)
    subtipo = serializers.ChoiceField(choices=MovimientoInventario.SUBTIPO_CHOICES, required=False)
    operador = serializers.CharField(required=False)
    correlacion_id = serializers.CharField(required=False)
    fecha_inicio = serializers.DateField(required=False)
    fecha_fin = serializers.DateField(required=False)
    incluir_revertidos = serializers.BooleanField(required=False, default=True)
    pagina = serializers.IntegerField(required=False, default=1, min_value=1)
    limite = serializers.IntegerField(required=False, default=50, min_value=1)

    def validate(self, attrs):
        inicio = attrs.get("fecha_inicio")
        fin = attrs.get("fecha_fin")
        if inicio and fin and inicio > fin:
            raise serializers.ValidationError("fecha_inicio no puede ser posterior a fecha_fin.")
        return attrs


class PlanificarProduccionSerializer(serializers.Serializer):
    nombre = serializers.CharField(max_length=150)
    tipo_salida = serializers.ChoiceField(choices=TipoItem.choices)
    salida_id = serializers.IntegerField()
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    insumos = InsumoProduccionSerializer(many=True, required=False, default=list)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser > 0.")
        return value


class CancelarProduccionSerializer(serializers.Serializer):
    motivo = serializers.CharField()
