from logistics.exceptions import ValidationFailure
from logistics.responses import api_view, form_errors, success

from .annotator import build_annotator
from .forms import DateRangeForm
from .services import DashboardService


def _date_range(request):
    form = DateRangeForm.from_query(request.GET)
    if not form.is_valid():
        raise ValidationFailure(form_errors(form))
    return form.cleaned_data['start_date'], form.cleaned_data['end_date']


def _period(start, end):
    return {'start_date': start.isoformat(), 'end_date': end.isoformat()}


# KPI за період із трендом відносно попереднього періоду
@api_view(['GET'])
def kpi(request):
    start, end = _date_range(request)
    service = DashboardService()
    return success({'period': _period(start, end), 'metrics': service.kpi_metrics(start, end)})


@api_view(['GET'])
def trends(request):
    start, end = _date_range(request)
    service = DashboardService()
    return success({'period': _period(start, end), 'trends': service.performance_trends(start, end)})


# Підказки за правилами, за наявності ключа доповнені текстовою моделлю
@api_view(['GET'])
def insights(request):
    start, end = _date_range(request)
    service = DashboardService(build_annotator())
    return success({'period': _period(start, end), 'insights': service.insights(start, end)})


@api_view(['GET'])
def transporter_comparison(request):
    start, end = _date_range(request)
    service = DashboardService()
    return success({'period': _period(start, end), 'transporters': service.transporter_comparison(start, end)})


@api_view(['GET'])
def health(request):
    return success(DashboardService(build_annotator()).health())
