"""
Chantiers Console - Erreurs métier

Trois familles, remontées telles quelles à l'appelant (pas de retry interne):
- NotFoundError: chantier, phase, membre, client ou template inexistant
- ValidationError: entrée de type invalide (les bornes numériques sont clampées, pas rejetées)
- TransientStoreError: lecture/écriture/abonnement MongoDB en échec
"""


class ChantierError(Exception):
    """Base des erreurs du domaine chantier"""
    pass


class NotFoundError(ChantierError):
    def __init__(self, kind: str, ref: str):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} {ref} introuvable")


class ValidationError(ChantierError):
    pass


class TransientStoreError(ChantierError):
    pass
