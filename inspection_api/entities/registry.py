# inspection_api/entities/registry.py
#
# Every entity the API serves, in mount order. Adding an entity means adding
# a module with CONFIG and build_router, and one line here.
from inspection_api.discovery import EntityRegistration
from inspection_api.entities import (
    customer,
    customer_site,
    defect,
    defect_customer_image,
    defect_image,
    defectdata,
    defectdata_customer,
    inf_checkin,
    inf_lotinput,
    inspectiondata,
    iqadata,
    line_fvi,
    parts,
    report,
    sampling_reason,
    sysconfig,
)

ENTITY_REGISTRATIONS = tuple(
    EntityRegistration(module.CONFIG, module.build_router)
    for module in (
        defect,
        sysconfig,
        sampling_reason,
        customer,
        line_fvi,
        customer_site,
        parts,
        inspectiondata,
        defectdata,
        defectdata_customer,
        defect_image,
        defect_customer_image,
        inf_checkin,
        inf_lotinput,
        iqadata,
        report,
    )
)
