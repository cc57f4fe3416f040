from typing import Dict, List, Optional

from adcommand_kit.execution.materials import MaterialAssignment, ResolvedMaterials


system_prompt_template = """
You are an expert Facebook Ads manager with access to Facebook Marketing API tools.

## COMMAND TYPES

### 1. CAMPAIGN CREATION (when user wants to create new campaigns)
- **WORKFLOW**: Always create all 3: campaign -> adset -> ad. A campaign alone is incomplete.
- **URLs**: NEVER make up image/video URLs. Only use EXACT URLs from the materials list below.
- Create one entity per turn and wait for its id. Never invent ids like "ACTUAL_CAMPAIGN_ID".

### 2. CAMPAIGN MANAGEMENT (when user wants to manage existing campaigns)
- Pause or activate: get_campaigns, then update_campaign with status="PAUSED" or "ACTIVE" for each match.
- Change budget: get_campaigns to find the campaign by name, then update_campaign with dailyBudget in CENTS.
- Duplicate: prefer duplicate_campaign / duplicate_adset / duplicate_ad. They copy everything natively.

## TARGETING

- **Country** (geoLocations.countries): 2-letter country codes. "Romanian men" -> countries: ["RO"]
- **Language** (locales): 2-letter language codes as STRINGS. "Romanian language" -> locales: ["ro"].
  Never numeric locale ids.
- Language is INDEPENDENT of country! "Romanian language in Germany" -> countries: ["DE"], locales: ["ro"]
- **Gender**: Men = [1], Women = [2]. Omit genders unless the user explicitly says men/women.
  A nationality ("Romanians") says nothing about gender.
- **Interests**: include when the user specifies them ("interested in fashion" -> interests: ["Fashion"])

## EXAMPLE

For "Create leads campaign for Romanian men on Romanian language, aged 20-45, $15 daily budget":
1. create_campaign: accountId="{account_id}", objective="OUTCOME_LEADS", dailyBudget=1500
2. create_adset: targeting={{ geoLocations: {{ countries: ["RO"] }}, locales: ["ro"], ageMin: 20, ageMax: 45, genders: [1] }}
3. create_ad: use imageUrl/videoUrl from the materials list

IMPORTANT: Budget values are in CENTS, not dollars! $10 = 1000, $25 = 2500, $50 = 5000.

## MATERIALS

{materials_info}
"""


MANAGEMENT_WORDS = ("pause", "activate", "resume", "duplicate", "update", "change status", "change budget", "set budget", "budget to")


def build_system_prompt(account_id: str, materials: ResolvedMaterials, already_created: Optional[str] = None) -> str:
    prompt = system_prompt_template.format(account_id=account_id, materials_info=materials.info_text())
    if materials.assignments:
        lines = [f"- ad{a.ad_index + 1}: {a.filename} ({a.material.file_url})" for a in materials.assignments]
        prompt += "\n## MATERIAL ASSIGNMENTS\n" + "\n".join(lines) + "\n"
    if already_created:
        prompt += "\n## ALREADY CREATED\n" + already_created + "\n"
    return prompt


def build_user_message(command: str) -> str:
    return f'Parse and execute this command: "{command}"'


def is_management_command(command: str) -> bool:
    lowered = (command or "").lower()
    if any(w in lowered for w in MANAGEMENT_WORDS):
        return True
    return "ctr" in lowered and ("below" in lowered or "under" in lowered)


def resume_note(campaign_id: Optional[str], ad_set_id: Optional[str], ad_ids: List[str]) -> str:
    parts = []
    if campaign_id:
        parts.append(f"Campaign ID {campaign_id} already exists, do not create another campaign.")
    if ad_set_id:
        parts.append(f"Ad set ID {ad_set_id} already exists, do not create another ad set.")
    if ad_ids:
        parts.append(f"{len(ad_ids)} ad(s) already exist: {', '.join(ad_ids)}.")
    return " ".join(parts)


def nudge_create_adset(campaign_id: str) -> str:
    return f"Great! Campaign was created with ID: {campaign_id}. Now create an adset for this campaign using the targeting parameters from the original command."


def nudge_duplicate_adset(campaign_id: str) -> str:
    return f"Great! Duplicate campaign was created with ID: {campaign_id}. Now create an adset for this campaign with the new targeting parameters (as specified in the command)."


def nudge_duplicate_ad(ad_set_id: str) -> str:
    return f"Excellent! Campaign and adset created. Now create an ad for adset {ad_set_id} to complete the duplication."


def _material_instruction(assignment: Optional[MaterialAssignment]) -> str:
    if assignment is None:
        return ""
    return f" Use {assignment.filename} ({assignment.media_field}: {assignment.material.file_url}) for this ad's creative."


def nudge_next_ad(ad_set_id: str, ads_created: int, requested_ads: int, materials: ResolvedMaterials) -> str:
    n = ads_created + 1
    if ads_created == 0:
        opener = "Excellent! Campaign and adset were created successfully."
    else:
        opener = f"Good! Ad {ads_created} created."
    assignment = materials.assignment(ads_created)
    if assignment is None and ads_created < len(materials.for_command):
        mat = materials.for_command[ads_created]
        assignment = MaterialAssignment(ads_created, mat.display_name, mat)
    return (
        f"{opener} AdSet ID: {ad_set_id}. Now create ad {n} of {requested_ads} for this adset."
        f"{_material_instruction(assignment)} Use a unique ad name like \"Ad {n}\" to distinguish it."
    )


def build_final_message(command: str, counts: Dict[str, int], total_actions: int, requested_ads: int = 1) -> str:
    if counts.get("duplicate_campaign"):
        return f"Duplicated {counts['duplicate_campaign']} campaign(s) with all ad sets and ads"
    if counts.get("duplicate_adset"):
        return f"Duplicated {counts['duplicate_adset']} ad set(s) with all ads"
    if counts.get("duplicate_ad"):
        return f"Duplicated {counts['duplicate_ad']} ad(s)"
    if counts.get("update_campaign"):
        return f"Updated {counts['update_campaign']} campaign(s): {command}"
    if counts.get("create_campaign"):
        ads = counts.get("create_ad", 0)
        if counts.get("create_adset") and ads >= requested_ads:
            return f"Campaign + Ad Set + {ads} Ad{'' if ads == 1 else 's'} created successfully."
        created = "Campaign + Ad Set" if counts.get("create_adset") else "Campaign"
        return (
            f"Created {created} and {ads} of {requested_ads} requested ad{'' if requested_ads == 1 else 's'}. "
            "The command was only partially executed."
        )
    return f"Executed {total_actions} actions for: {command}"
