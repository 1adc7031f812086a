"""Built-in certificate templates, seeded by scripts/seed_default_templates.py."""

from typing import TypedDict


class DefaultTemplate(TypedDict):
    name: str
    description: str
    html: str


DEFAULT_TEMPLATES: dict[str, DefaultTemplate] = {
    "modern": {
        "name": "Moderno",
        "description": "Fondo degradado con tipografía grande",
        "html": """
<div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); width: 100%; height: 100%; display: flex; align-items: center; justify-content: center; color: white;">
  <div style="text-align: center; padding: 40px;">
    <h1 style="font-size: 48px; margin-bottom: 20px; font-weight: bold;">CERTIFICADO</h1>
    <p style="font-size: 24px; margin-bottom: 40px;">Se otorga a</p>
    <h2 style="font-size: 56px; margin-bottom: 40px; font-weight: bold; text-transform: uppercase;">{{student_name}}</h2>
    <p style="font-size: 20px; margin-bottom: 20px;">Por completar exitosamente el curso</p>
    <h3 style="font-size: 32px; margin-bottom: 40px; font-weight: 600;">{{course_title}}</h3>
    {{#if CUSTOM_MESSAGE}}<p style="font-size: 18px; margin-bottom: 30px;">{{CUSTOM_MESSAGE}}</p>{{/if}}
    <div style="display: flex; justify-content: space-around; max-width: 600px; margin: 0 auto;">
      <div>
        <p style="font-size: 14px; opacity: 0.9;">Duración</p>
        <p style="font-size: 20px; font-weight: bold;">{{duration_hours}} horas</p>
      </div>
      <div>
        <p style="font-size: 14px; opacity: 0.9;">Fecha de emisión</p>
        <p style="font-size: 20px; font-weight: bold;">{{formatDate issue_date}}</p>
      </div>
    </div>
    <p style="font-size: 14px; margin-top: 60px; opacity: 0.8;">Certificado N° {{certificate_number}}</p>
  </div>
</div>
""",
    },
    "classic": {
        "name": "Clásico",
        "description": "Doble borde con tipografía serif",
        "html": """
<div style="background: #fff; width: 100%; height: 100%; padding: 60px; border: 20px solid #2c3e50; position: relative;">
  <div style="border: 3px solid #e74c3c; padding: 40px; height: 100%;">
    <div style="text-align: center;">
      <h1 style="font-size: 64px; color: #2c3e50; margin-bottom: 30px; font-family: 'Georgia', serif;">Certificado de Finalización</h1>
      <p style="font-size: 24px; color: #555; margin-bottom: 50px;">Este certificado se otorga a</p>
      <h2 style="font-size: 48px; color: #e74c3c; margin-bottom: 50px; text-decoration: underline;">{{student_name}}</h2>
      <p style="font-size: 20px; color: #555; margin-bottom: 20px;">Por haber completado satisfactoriamente</p>
      <h3 style="font-size: 36px; color: #2c3e50; margin-bottom: 60px;">{{course_title}}</h3>
      <div style="display: flex; justify-content: space-between; max-width: 500px; margin: 0 auto;">
        <div style="text-align: left;">
          <p style="font-size: 16px; color: #777;">Instructor: {{instructor_names}}</p>
          <p style="font-size: 16px; color: #777;">Duración: {{duration_hours}} horas</p>
        </div>
        <div style="text-align: right;">
          <p style="font-size: 16px; color: #777;">Fecha: {{formatDate completion_date}}</p>
          <p style="font-size: 16px; color: #777;">N°: {{certificate_number}}</p>
        </div>
      </div>
    </div>
  </div>
</div>
""",
    },
    "minimal": {
        "name": "Minimalista",
        "description": "Fondo claro con filete lateral",
        "html": """
<div style="background: #f8f9fa; width: 100%; height: 100%; padding: 80px; display: flex; flex-direction: column; justify-content: center;">
  <div style="max-width: 800px; margin: 0 auto;">
    <div style="border-left: 5px solid #000; padding-left: 40px;">
      <p style="font-size: 18px; color: #666; margin-bottom: 10px;">{{organization_name}} certifica que</p>
      <h1 style="font-size: 52px; color: #000; margin-bottom: 30px; font-weight: 300;">{{student_name}}</h1>
      <p style="font-size: 20px; color: #666; margin-bottom: 10px;">ha completado el curso</p>
      <h2 style="font-size: 36px; color: #000; margin-bottom: 60px; font-weight: 400;">{{course_title}}</h2>
      <div style="display: grid; grid-template-columns: 1fr 1fr; gap: 20px; font-size: 16px; color: #666;">
        <div>Duración: {{duration_hours}} horas</div>
        <div>Finalización: {{formatDate completion_date}}</div>
        <div>Instructor: {{instructor_names}}</div>
        <div>N°: {{certificate_number}}</div>
      </div>
    </div>
  </div>
</div>
""",
    },
}

# Seeded as the default template when none exists yet
DEFAULT_TEMPLATE_KEY = "modern"
