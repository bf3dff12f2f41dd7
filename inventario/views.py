from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .models import (
    EventoProduccion,
    Ingrediente,
    Material,
    MovimientoInventario,
    OrdenProduccion,
    ProductoCatalogo,
    Receta,
    Residuo,
    TipoItem,
)
from .serializers import (
    AjusteSerializer,
    AvanzarFaseSerializer,
    CancelarProduccionSerializer,
    CantidadSerializer,
    EventoProduccionSerializer,
    FiltroMovimientosSerializer,
    IngredienteSerializer,
    MaterialSerializer,
    MovimientoInventarioSerializer,
    NotasSerializer,
    OrdenProduccionSerializer,
    PlanificarProduccionSerializer,
    ProductoCatalogoSerializer,
    ProducirRecetaSerializer,
    RecetaSerializer,
    ResiduoSerializer,
    SolicitudProduccionSerializer,
)
from .services.inventario import (
    activar_item,
    ajustar,
    debitar,
    desactivar_item,
    obtener_materiales_bajo_stock,
    registrar_entrada,
    registrar_ingrediente,
    registrar_material,
)
from .services.movimientos import listar_movimientos, obtener_detalle_item, obtener_estadisticas_movimientos
from .services.ordenes import (
    cancelar_produccion,
    ejecutar_produccion,
    eliminar_produccion,
    planificar_produccion,
)
from .services.produccion import InsumoProduccion, SolicitudProduccion, producir
from .services.recetas import (
    avanzar_fase,
    crear_receta,
    desactivar_receta,
    iniciar_receta,
    pausar_receta,
    producir_receta,
    reanudar_receta,
    reiniciar_receta,
    verificar_disponibilidad_receta,
)
from .services.residuos import eliminar_residuo, registrar_residuo
from .services.reversion import reconciliar_eventos_pendientes, revertir_evento, revertir_movimiento
from .utils_roles import EsAdministradorInventario, contexto_actor


def _operador(request) -> str:
    return contexto_actor(request.user).actor_id


def _movimiento_data(movimiento):
    return MovimientoInventarioSerializer(movimiento).data


class ProductoCatalogoViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ProductoCatalogo.objects.all().select_related("inventario")
    serializer_class = ProductoCatalogoSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]


class ItemInventarioViewSet(viewsets.ModelViewSet):
    """
    Base para ingredientes y materiales: las cantidades solo se mueven con
    las acciones entrada / consumir / ajuste.
    """
    tipo_item = None
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def _registrar(self, operador, datos):
        raise NotImplementedError

    def perform_create(self, serializer):
        datos = dict(serializer.validated_data)
        serializer.instance = self._registrar(_operador(self.request), datos)

    def destroy(self, request, pk=None):
        item = desactivar_item(tipo_item=self.tipo_item, item_id=pk, operador=_operador(request))
        return Response(self.get_serializer(item).data)

    @action(detail=True, methods=["post"], url_path="activar")
    def activar(self, request, pk=None):
        item = activar_item(tipo_item=self.tipo_item, item_id=pk, operador=_operador(request))
        return Response(self.get_serializer(item).data)

    @action(detail=True, methods=["post"], url_path="entrada")
    def entrada(self, request, pk=None):
        """
        Entrada manual de stock.
        POST /api/ingredientes/<id>/entrada/
        """
        serializer = CantidadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        resultado = registrar_entrada(
            tipo_item=self.tipo_item,
            item_id=pk,
            cantidad=serializer.validated_data["cantidad"],
            motivo=serializer.validated_data["motivo"],
            operador=_operador(request),
        )
        return Response(
            {
                "item": self.get_serializer(resultado.item).data,
                "movimiento": _movimiento_data(resultado.movimiento),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="consumir")
    def consumir(self, request, pk=None):
        serializer = CantidadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        resultado = debitar(
            tipo_item=self.tipo_item,
            item_id=pk,
            cantidad=serializer.validated_data["cantidad"],
            motivo=serializer.validated_data["motivo"] or "Consumo manual",
            operador=_operador(request),
        )
        return Response(
            {
                "item": self.get_serializer(resultado.item).data,
                "movimiento": _movimiento_data(resultado.movimiento),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="ajuste")
    def ajuste(self, request, pk=None):
        serializer = AjusteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        resultado = ajustar(
            tipo_item=self.tipo_item,
            item_id=pk,
            cantidad=serializer.validated_data["cantidad"],
            motivo=serializer.validated_data["motivo"],
            operador=_operador(request),
        )
        return Response(
            {
                "item": self.get_serializer(resultado.item).data,
                "movimiento": _movimiento_data(resultado.movimiento),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="movimientos")
    def movimientos(self, request, pk=None):
        detalle = obtener_detalle_item(tipo_item=self.tipo_item, item_id=pk)
        return Response(
            {
                "item": self.get_serializer(detalle["item"]).data,
                "disponible": str(detalle["disponible"]),
                "movimientos": MovimientoInventarioSerializer(detalle["movimientos"], many=True).data,
            }
        )


class IngredienteViewSet(ItemInventarioViewSet):
    queryset = Ingrediente.objects.all()
    serializer_class = IngredienteSerializer
    tipo_item = TipoItem.INGREDIENTE.value

    def _registrar(self, operador, datos):
        return registrar_ingrediente(
            nombre=datos["nombre"],
            unidad_medida=datos["unidad_medida"],
            operador=operador,
            cantidad_inicial=datos.get("cantidad_inicial") or 0,
            producto_referencia=datos.get("producto_referencia"),
        )


class MaterialViewSet(ItemInventarioViewSet):
    queryset = Material.objects.all()
    serializer_class = MaterialSerializer
    tipo_item = TipoItem.MATERIAL.value

    def _registrar(self, operador, datos):
        return registrar_material(
            nombre=datos["nombre"],
            unidad_medida=datos["unidad_medida"],
            operador=operador,
            cantidad_inicial=datos.get("cantidad_inicial") or 0,
            stock_minimo=datos.get("stock_minimo") or 0,
            producto_referencia=datos.get("producto_referencia"),
        )

    @action(detail=False, methods=["get"], url_path="bajo-stock")
    def bajo_stock(self, request):
        serializer = self.get_serializer(obtener_materiales_bajo_stock(), many=True)
        return Response(serializer.data)


class RecetaViewSet(viewsets.ModelViewSet):
    queryset = Receta.objects.all().prefetch_related("ingredientes__ingrediente", "historial_fases")
    serializer_class = RecetaSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]
    http_method_names = ["get", "post", "delete", "head", "options"]

    def perform_create(self, serializer):
        datos = serializer.validated_data
        serializer.instance = crear_receta(
            nombre=datos["nombre"],
            descripcion=datos.get("descripcion", ""),
            rendimiento_cantidad=datos.get("rendimiento_cantidad", 1),
            rendimiento_unidad=datos.get("rendimiento_unidad", "unidad"),
            ingredientes=[dict(linea) for linea in datos["lineas"]],
        )

    def _respuesta(self, receta):
        receta = self.get_queryset().get(pk=receta.pk)
        return Response(self.get_serializer(receta).data)

    def destroy(self, request, pk=None):
        receta = desactivar_receta(receta=self.get_object(), operador=_operador(request))
        return self._respuesta(receta)

    @action(detail=True, methods=["post"], url_path="desactivar")
    def desactivar(self, request, pk=None):
        receta = desactivar_receta(receta=self.get_object(), operador=_operador(request))
        return self._respuesta(receta)

    @action(detail=True, methods=["post"], url_path="iniciar")
    def iniciar(self, request, pk=None):
        serializer = NotasSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receta = iniciar_receta(receta=self.get_object(), notas=serializer.validated_data["notas"])
        return self._respuesta(receta)

    @action(detail=True, methods=["post"], url_path="avanzar-fase")
    def avanzar_fase(self, request, pk=None):
        """
        POST /api/recetas/<id>/avanzar-fase/
        {"notas": "...", "ingredientes_adicionales": [{"ingrediente_id": 1, "cantidad": "2"}]}
        """
        serializer = AvanzarFaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receta = avanzar_fase(
            receta=self.get_object(),
            operador=_operador(request),
            notas=serializer.validated_data["notas"],
            ingredientes_adicionales=[
                dict(linea) for linea in serializer.validated_data["ingredientes_adicionales"]
            ],
        )
        return self._respuesta(receta)

    @action(detail=True, methods=["post"], url_path="pausar")
    def pausar(self, request, pk=None):
        return self._respuesta(pausar_receta(receta=self.get_object()))

    @action(detail=True, methods=["post"], url_path="reanudar")
    def reanudar(self, request, pk=None):
        return self._respuesta(reanudar_receta(receta=self.get_object()))

    @action(detail=True, methods=["post"], url_path="reiniciar")
    def reiniciar(self, request, pk=None):
        serializer = NotasSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receta = reiniciar_receta(
            receta=self.get_object(),
            operador=_operador(request),
            motivo=serializer.validated_data["notas"],
        )
        return self._respuesta(receta)

    @action(detail=True, methods=["get"], url_path="disponibilidad")
    def disponibilidad(self, request, pk=None):
        """
        GET /api/recetas/<id>/disponibilidad/?lotes=2
        """
        receta = self.get_object()
        serializer = ProducirRecetaSerializer(data={"lotes": request.query_params.get("lotes", "1")})
        serializer.is_valid(raise_exception=True)
        faltantes = verificar_disponibilidad_receta(
            receta=receta,
            lotes=serializer.validated_data["lotes"],
        )
        return Response(
            {
                "receta": receta.id,
                "lotes": str(serializer.validated_data["lotes"]),
                "disponible": not faltantes,
                "faltantes": [f.como_dict() for f in faltantes],
            }
        )

    @action(detail=True, methods=["post"], url_path="producir")
    def producir(self, request, pk=None):
        serializer = ProducirRecetaSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        resultado = producir_receta(
            receta=self.get_object(),
            lotes=serializer.validated_data["lotes"],
            operador=_operador(request),
            motivo=serializer.validated_data["motivo"],
        )
        return Response(
            {
                "correlacion_id": resultado.correlacion_id,
                "cantidad_producida": str(resultado.cantidad_producida),
                "movimientos": MovimientoInventarioSerializer(resultado.movimientos, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )


class MovimientoInventarioViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = MovimientoInventario.objects.all().prefetch_related("compensaciones")
    serializer_class = MovimientoInventarioSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def list(self, request):
        """
        GET /api/movimientos/?tipo_item=ingrediente&operador=ana&pagina=2
        """
        filtros = FiltroMovimientosSerializer(data=request.query_params)
        filtros.is_valid(raise_exception=True)
        pagina = listar_movimientos(**filtros.validated_data)
        return Response(
            {
                "total": pagina.total,
                "pagina": pagina.pagina,
                "total_paginas": pagina.total_paginas,
                "movimientos": self.get_serializer(pagina.movimientos, many=True).data,
            }
        )

    @action(detail=False, methods=["get"], url_path="estadisticas")
    def estadisticas(self, request):
        filtros = FiltroMovimientosSerializer(data=request.query_params)
        filtros.is_valid(raise_exception=True)
        datos = obtener_estadisticas_movimientos(
            fecha_inicio=filtros.validated_data.get("fecha_inicio"),
            fecha_fin=filtros.validated_data.get("fecha_fin"),
        )
        return Response(datos)

    @action(detail=True, methods=["post"], url_path="revertir")
    def revertir(self, request, pk=None):
        """
        Revierte una entrada manual.
        POST /api/movimientos/<id>/revertir/
        """
        motivo = NotasSerializer(data=request.data)
        motivo.is_valid(raise_exception=True)
        resultado = revertir_movimiento(
            movimiento_id=pk,
            operador=_operador(request),
            motivo=motivo.validated_data["notas"],
        )
        return Response(
            {"compensaciones": self.get_serializer(resultado.compensaciones, many=True).data},
            status=status.HTTP_201_CREATED,
        )


class ProduccionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Eventos de producción, identificados por su correlacion_id.
    """
    queryset = EventoProduccion.objects.all().select_related("receta")
    serializer_class = EventoProduccionSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]
    lookup_field = "correlacion_id"

    def create(self, request):
        serializer = SolicitudProduccionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        datos = serializer.validated_data
        resultado = producir(
            SolicitudProduccion(
                tipo_salida=datos["tipo_salida"],
                salida_id=datos["salida_id"],
                cantidad=datos["cantidad"],
                operador=_operador(request),
                insumos=[InsumoProduccion(**insumo) for insumo in datos["insumos"]],
                motivo=datos["motivo"],
                correlacion_id=datos.get("correlacion_id") or None,
            )
        )
        return Response(
            {
                "correlacion_id": resultado.correlacion_id,
                "cantidad_producida": str(resultado.cantidad_producida),
                "evento": self.get_serializer(resultado.evento).data,
                "movimientos": MovimientoInventarioSerializer(resultado.movimientos, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(
        detail=True,
        methods=["post"],
        url_path="revertir",
        permission_classes=[EsAdministradorInventario],
    )
    def revertir(self, request, correlacion_id=None):
        resultado = revertir_evento(correlacion_id=correlacion_id, operador=_operador(request))
        return Response(
            {
                "correlacion_id": resultado.correlacion_id,
                "correlacion_revertida": resultado.correlacion_revertida,
                "compensaciones": MovimientoInventarioSerializer(resultado.compensaciones, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(
        detail=False,
        methods=["post"],
        url_path="reconciliar",
        permission_classes=[EsAdministradorInventario],
    )
    def reconciliar(self, request):
        reconciliados = reconciliar_eventos_pendientes(operador=_operador(request))
        return Response({"reconciliados": reconciliados})


class OrdenProduccionViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    Producciones planificadas.
    POST /api/ordenes-produccion/ planifica; ejecutar / cancelar cambian el
    estado; DELETE revierte la producción si estaba completada.
    """
    queryset = OrdenProduccion.objects.all()
    serializer_class = OrdenProduccionSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get_queryset(self):
        qs = super().get_queryset()
        estado = self.request.query_params.get("estado")
        if self.action == "list" and estado:
            qs = qs.filter(estado=estado)
        return qs

    def get_permissions(self):
        if self.action == "destroy":
            return [EsAdministradorInventario()]
        return super().get_permissions()

    def create(self, request):
        serializer = PlanificarProduccionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        datos = serializer.validated_data
        orden = planificar_produccion(
            nombre=datos["nombre"],
            tipo_salida=datos["tipo_salida"],
            salida_id=datos["salida_id"],
            cantidad=datos["cantidad"],
            insumos=[dict(insumo) for insumo in datos["insumos"]],
            observaciones=datos["observaciones"],
            operador=_operador(request),
        )
        return Response(self.get_serializer(orden).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="ejecutar")
    def ejecutar(self, request, pk=None):
        orden = ejecutar_produccion(orden=self.get_object(), operador=_operador(request))
        return Response(self.get_serializer(orden).data)

    @action(detail=True, methods=["post"], url_path="cancelar")
    def cancelar(self, request, pk=None):
        serializer = CancelarProduccionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        orden = cancelar_produccion(
            orden=self.get_object(),
            motivo=serializer.validated_data["motivo"],
            operador=_operador(request),
        )
        return Response(self.get_serializer(orden).data)

    def destroy(self, request, pk=None):
        resultado = eliminar_produccion(orden=self.get_object(), operador=_operador(request))
        compensaciones = resultado.compensaciones if resultado else []
        return Response(
            {
                "inventario_revertido": resultado is not None,
                "compensaciones": MovimientoInventarioSerializer(compensaciones, many=True).data,
            }
        )


class ResiduoViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Residuo.objects.all()
    serializer_class = ResiduoSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get_queryset(self):
        qs = super().get_queryset()
        if self.action == "list" and self.request.query_params.get("incluir_inactivos") != "1":
            qs = qs.filter(activo=True)
        return qs

    def perform_create(self, serializer):
        datos = serializer.validated_data
        serializer.instance = registrar_residuo(
            tipo_item=datos["tipo_item"],
            item_id=datos["item_id"],
            cantidad=datos["cantidad"],
            motivo=datos["motivo"],
            observaciones=datos.get("observaciones", ""),
            operador=_operador(self.request),
        )

    def destroy(self, request, pk=None):
        residuo = self.get_object()
        eliminar_residuo(residuo=residuo, operador=_operador(request))
        return Response(status=status.HTTP_204_NO_CONTENT)
