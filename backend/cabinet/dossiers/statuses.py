"""
Dossier status pipeline.

Statuses follow the French administrative procedure for residence permits,
from reception of the request to the decision and, after an unfavourable
decision, the litigation track. Legal moves are listed in ``TRANSITIONS``;
anything not listed is rejected.

The five legacy values predate the detailed pipeline. They can still be
read and displayed, and a dossier holding one may move to any pipeline
status, but they can never be set again.
"""

import enum


class DossierStatus(str, enum.Enum):
    recu = "recu"
    accepte = "accepte"
    refuse = "refuse"
    en_attente_onboarding = "en_attente_onboarding"
    en_cours_instruction = "en_cours_instruction"
    pieces_manquantes = "pieces_manquantes"
    dossier_complet = "dossier_complet"
    depose = "depose"
    reception_confirmee = "reception_confirmee"
    complement_demande = "complement_demande"
    decision_defavorable = "decision_defavorable"
    communication_motifs = "communication_motifs"
    recours_preparation = "recours_preparation"
    refere_mesures_utiles = "refere_mesures_utiles"
    refere_suspension_rep = "refere_suspension_rep"
    gain_cause = "gain_cause"
    rejet = "rejet"
    decision_favorable = "decision_favorable"
    # Legacy
    en_attente = "en_attente"
    en_cours = "en_cours"
    en_revision = "en_revision"
    termine = "termine"
    annule = "annule"


S = DossierStatus

LEGACY_STATUSES = frozenset({S.en_attente, S.en_cours, S.en_revision, S.termine, S.annule})
PIPELINE_STATUSES = tuple(s for s in DossierStatus if s not in LEGACY_STATUSES)
TERMINAL_STATUSES = frozenset({S.refuse, S.decision_favorable, S.gain_cause, S.rejet})

STATUS_LABELS: dict[DossierStatus, str] = {
    S.recu: "Reçu",
    S.accepte: "Accepté",
    S.refuse: "Refusé",
    S.en_attente_onboarding: "En attente d'onboarding (RDV)",
    S.en_cours_instruction: "En cours d'instruction (constitution dossier)",
    S.pieces_manquantes: "Pièces manquantes (relance client)",
    S.dossier_complet: "Dossier Complet",
    S.depose: "Déposé",
    S.reception_confirmee: "Réception confirmée",
    S.complement_demande: "Complément demandé (avec date limite)",
    S.decision_defavorable: "Décision défavorable",
    S.communication_motifs: "Communication des Motifs",
    S.recours_preparation: "Recours en préparation",
    S.refere_mesures_utiles: "Référé Mesures Utiles",
    S.refere_suspension_rep: "Référé suspension et REP",
    S.gain_cause: "Gain de cause",
    S.rejet: "Rejet",
    S.decision_favorable: "Décision favorable",
    S.en_attente: "En attente",
    S.en_cours: "En cours",
    S.en_revision: "En révision",
    S.termine: "Terminé",
    S.annule: "Annulé",
}

TRANSITIONS: dict[DossierStatus, frozenset[DossierStatus]] = {
    S.recu: frozenset({S.accepte, S.refuse}),
    S.accepte: frozenset({S.en_attente_onboarding}),
    S.en_attente_onboarding: frozenset({S.en_cours_instruction}),
    S.en_cours_instruction: frozenset({S.pieces_manquantes, S.dossier_complet}),
    S.pieces_manquantes: frozenset({S.dossier_complet}),
    S.dossier_complet: frozenset({S.pieces_manquantes, S.depose}),
    S.depose: frozenset({S.reception_confirmee}),
    S.reception_confirmee: frozenset({S.complement_demande, S.decision_defavorable, S.decision_favorable}),
    S.complement_demande: frozenset({S.reception_confirmee, S.decision_defavorable, S.decision_favorable}),
    S.decision_defavorable: frozenset({S.communication_motifs, S.recours_preparation}),
    S.communication_motifs: frozenset({S.recours_preparation}),
    S.recours_preparation: frozenset({S.refere_mesures_utiles, S.refere_suspension_rep}),
    S.refere_mesures_utiles: frozenset({S.gain_cause, S.rejet}),
    S.refere_suspension_rep: frozenset({S.gain_cause, S.rejet}),
}


def status_label(status: DossierStatus | str) -> str:
    try:
        return STATUS_LABELS[DossierStatus(status)]
    except ValueError:
        return str(status)


def allowed_transitions(current: DossierStatus) -> frozenset[DossierStatus]:
    if current in LEGACY_STATUSES:
        return frozenset(PIPELINE_STATUSES)
    if current in TERMINAL_STATUSES:
        return frozenset()
    # Refusal is reachable from every open stage.
    return TRANSITIONS.get(current, frozenset()) | {S.refuse}


def can_transition(current: DossierStatus, target: DossierStatus) -> bool:
    if target == current:
        return True
    if target in LEGACY_STATUSES:
        return False
    return target in allowed_transitions(current)
