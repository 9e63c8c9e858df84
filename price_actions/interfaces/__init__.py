"""
Sous-package `interfaces` du moteur Price Actions.

Responsabilités :
- fournir une couche d'abstraction entre le moteur et les systèmes externes
  (entrepôt de ventes, store de configuration),
- centraliser les appels à Supabase,
- faciliter le test (les contrats abstraits se remplacent par des fakes).
"""
