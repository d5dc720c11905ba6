from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.services.errors import ConfigurationError
from whatsapp_crm.utils.helpers import to_object_id


async def find_default_funnel(company_id):
    funnel = await get_db().funnels.find_one({"company_id": company_id, "is_default": True, "deleted_at": None})
    if not funnel:
        raise ConfigurationError("Default funnel not found")
    return funnel


async def list_steps(funnel_id):
    cursor = get_db().funnel_steps.find({"funnel_id": funnel_id, "deleted_at": None}).sort("order", 1)
    return await cursor.to_list(length=None)


async def first_step_of_default_funnel(company_id):
    funnel = await find_default_funnel(company_id)
    steps = await list_steps(funnel["_id"])
    if not steps:
        raise ConfigurationError("Default funnel has no steps")
    return steps[0]


async def find_step_for_company(company_id, step_id):
    """Return the live step if it sits in a live funnel owned by the company, else None."""
    oid = to_object_id(step_id)
    if oid is None:
        return None
    step = await get_db().funnel_steps.find_one({"_id": oid, "deleted_at": None})
    if not step:
        return None
    funnel = await get_db().funnels.find_one({"_id": step["funnel_id"], "company_id": company_id, "deleted_at": None})
    return step if funnel else None
